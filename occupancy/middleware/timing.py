"""
Per-request trace id and duration.

Every response carries ``X-Trace-ID``, echoing the caller's header when one
was sent, and ``X-Request-Duration-Ms``. Requests slower than
``SLOW_REQUEST_MS`` log a warning and 5xx responses log an error. Everything
else logs at debug, except the health check, which is not logged.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

_UNLOGGED_PATHS = frozenset({"/api/v1/health"})

SLOW_REQUEST_MS = 1000


def _log_level(status_code: int, duration_ms: float) -> int:
    if status_code >= 500:
        return logging.ERROR
    if duration_ms > SLOW_REQUEST_MS:
        return logging.WARNING
    return logging.DEBUG


def init_request_timing(app: Flask):
    @app.before_request
    def _open_trace():
        g.request_started = time.perf_counter()
        g.trace_id = request.headers.get("X-Trace-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _close_trace(response):
        started = g.pop("request_started", None)
        if started is None:
            return response

        elapsed = (time.perf_counter() - started) * 1000
        response.headers["X-Trace-ID"] = g.get("trace_id", "")
        response.headers["X-Request-Duration-Ms"] = f"{elapsed:.1f}"

        if request.path not in _UNLOGGED_PATHS:
            logger.log(
                _log_level(response.status_code, elapsed),
                "%s %s -> %d in %.0fms",
                request.method, request.path, response.status_code, elapsed,
                extra={
                    "method": request.method,
                    "path": request.path,
                    "status": response.status_code,
                    "duration_ms": round(elapsed, 1),
                },
            )
        return response
