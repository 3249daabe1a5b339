"""
Logging setup for the occupancy service.

Two output shapes:
    readable  coloured one-liners for a developer terminal
    json      one object per line for the log shipper

``LOG_FORMAT`` picks one explicitly; otherwise production gets JSON and
everything else gets the readable form. ``LOG_LEVEL`` sets the threshold.

Service code passes context through ``extra={...}``. The keys in
``CONTEXT_FIELDS`` are lifted into the JSON document, and every record made
inside a Flask request is stamped with that request's trace id.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

CONTEXT_FIELDS = (
    "trace_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "request_id",
    "request_no",
    "from_status",
    "to_status",
    "actor_type",
    "template_type",
    "dispatch_status",
    "event_type",
)

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "flask_limiter")


class TraceIdFilter(logging.Filter):
    """Copy ``g.trace_id`` onto records emitted while a request is active."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "trace_id", None) is None and has_request_context():
            record.trace_id = getattr(g, "trace_id", None)
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        doc = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        doc.update(
            (key, getattr(record, key))
            for key in CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        )
        if record.exc_info and record.exc_info[0] is not None:
            doc["exception"] = self.formatException(record.exc_info)
        return json.dumps(doc, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Short coloured lines; shows the request number when one is attached."""

    _LEVEL_COLOURS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    _RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self._LEVEL_COLOURS.get(record.levelno, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tags = "".join(
            f" [{value}]"
            for value in (getattr(record, "request_no", None), getattr(record, "trace_id", None))
            if value
        )
        line = f"{colour}{stamp} {record.levelname:<8}{self._RESET} {record.name}{tags} {record.getMessage()}"
        if record.exc_info and record.exc_info[0] is not None:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _wants_json(app) -> bool:
    explicit = os.getenv("LOG_FORMAT", "").lower()
    if explicit in ("json", "readable"):
        return explicit == "json"
    return not (app.config.get("DEBUG") or app.config.get("TESTING"))


def configure_logging(app):
    """Install a single stderr handler on the root logger for ``app``."""
    as_json = _wants_json(app)
    level_name = os.getenv("LOG_LEVEL", "INFO" if as_json else "DEBUG").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if as_json else ReadableFormatter())
    handler.addFilter(TraceIdFilter())

    # create_app() runs many times under pytest; replace rather than stack
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)
    app.logger.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if not app.config.get("TESTING"):
        app.logger.info("Logging ready (level=%s, format=%s)",
                        level_name, "json" if as_json else "readable")
