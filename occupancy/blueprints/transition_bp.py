"""
Transition Request Blueprint.

Thin HTTP surface over the lifecycle engine. All routes under /api/v1.

Endpoints:
    POST   /api/v1/transition-requests
           Body: { "category", "kind", "unit_id", "user_id", "requester_email",
                   "detail": {...}, "scope"?: {...}, "move_date"?, "comments"?,
                   "linked_request_id"?, "manual_review"? }
           Returns: 201 with the new request.

    GET    /api/v1/transition-requests/<id>
    POST   /api/v1/transition-requests/<id>/transition
           Body: { "status", "actor_type", "actor_id"?, "remark"?,
                   "amendment"?: {...}, "expected_version"? }
    GET    /api/v1/transition-requests/<id>/history
    GET    /api/v1/recipients/resolve
           Query: category, kind, master_community_id, community_id?, tower_id?,
                  requester_email?, unit_id?

Layer contract:
    - Blueprint: parse input, call service, return JSON.
    - NO db.session calls here; the lifecycle service owns every commit.
    - Errors are mapped once by register_core_error_handlers().
"""

import logging

from flask import Blueprint, jsonify, request

from occupancy.blueprints import register_core_error_handlers
from occupancy.core.exceptions import ValidationError
from occupancy.services import transition_lifecycle
from occupancy.services.status_model import Actor
from occupancy.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

transition_bp = Blueprint("transitions", __name__, url_prefix="/api/v1")
register_core_error_handlers(transition_bp)


# ── Helpers ───────────────────────────────────────────────────────────────────


def _require(data: dict, *fields) -> None:
    missing = [name for name in fields if data.get(name) in (None, "")]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={name: "required" for name in missing},
        )


def _optional_int(data: dict, name: str):
    value = data.get(name)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer", details={name: "integer"})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer", details={name: "integer"})


def _flag(data: dict, name: str) -> bool:
    value = data.get(name)
    if value is None or value == "":
        return False
    try:
        return parse_bool(value)
    except ValueError:
        raise ValidationError(f"{name} must be true or false", details={name: "boolean"})


def _dict_field(data: dict, name: str) -> dict | None:
    value = data.get(name)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError(f"{name} must be an object", details={name: "object"})
    return value


# ═════════════════════════════════════════════════════════════════════════
# Transition requests
# ═════════════════════════════════════════════════════════════════════════


@transition_bp.route("/transition-requests", methods=["POST"])
def submit_request():
    data = request.get_json(silent=True) or {}
    _require(data, "category", "kind", "unit_id", "user_id", "requester_email")

    created = transition_lifecycle.submit(
        data["category"],
        _dict_field(data, "detail") or {},
        _dict_field(data, "scope"),
        kind=data["kind"],
        unit_id=_optional_int(data, "unit_id"),
        user_id=_optional_int(data, "user_id"),
        requester_email=data["requester_email"],
        move_date=data.get("move_date"),
        comments=data.get("comments"),
        linked_request_id=_optional_int(data, "linked_request_id"),
        manual_review=_flag(data, "manual_review"),
    )
    return jsonify(created.to_dict()), 201


@transition_bp.route("/transition-requests/<int:request_id>", methods=["GET"])
def get_request(request_id):
    return jsonify(transition_lifecycle.get_request(request_id).to_dict())


@transition_bp.route("/transition-requests/<int:request_id>/transition", methods=["POST"])
def transition_request(request_id):
    """Apply a status change. 409 on an illegal move or a stale ``expected_version``."""
    data = request.get_json(silent=True) or {}
    _require(data, "status", "actor_type")

    actor = Actor(actor_id=_optional_int(data, "actor_id"), actor_type=data["actor_type"])
    updated = transition_lifecycle.transition(
        request_id,
        data["status"],
        actor,
        remark=data.get("remark"),
        amendment=_dict_field(data, "amendment"),
        expected_version=_optional_int(data, "expected_version"),
    )
    return jsonify(updated.to_dict())


@transition_bp.route("/transition-requests/<int:request_id>/history", methods=["GET"])
def request_history(request_id):
    entries = transition_lifecycle.history(request_id)
    return jsonify({"items": [e.to_dict() for e in entries], "total": len(entries)})


# ═════════════════════════════════════════════════════════════════════════
# Recipient preview
# ═════════════════════════════════════════════════════════════════════════


@transition_bp.route("/recipients/resolve", methods=["GET"])
def resolve_recipients():
    args = request.args.to_dict()
    _require(args, "category", "kind", "master_community_id")

    resolution = transition_lifecycle.resolve_recipients(
        args["category"],
        {
            "master_community_id": args.get("master_community_id"),
            "community_id": args.get("community_id"),
            "tower_id": args.get("tower_id"),
        },
        args["kind"],
        requester_email=args.get("requester_email"),
        unit_id=_optional_int(args, "unit_id"),
    )
    return jsonify(resolution.to_dict())
