"""JSON error bodies shared by every blueprint.

    return api_error(E.NOT_FOUND, "TransitionRequest 12 not found")
    return api_error(E.CONFLICT_STATE, "Cannot move from 'closed'", details={...})

Body shape: ``{"error": <message>, "code": <E.*>, "details": {...}}``, where
``details`` is present only when there is something to report.
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes clients can branch on."""

    # 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    # 404
    NOT_FOUND = "ERR_NOT_FOUND"
    # 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    CONFLICT_CONCURRENT = "ERR_CONFLICT_CONCURRENT"
    # 500
    INTERNAL = "ERR_INTERNAL"


_HTTP_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.CONFLICT_CONCURRENT: 409,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Build ``(response, status)`` for ``code``; unknown codes map to 400."""
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _HTTP_STATUS.get(code, 400)
