"""
Recipient & Template Configuration Blueprint.

Endpoints:
    POST   /api/v1/recipient-configurations
           Body: { "master_community_id", "community_id"?, "tower_id"?,
                   "mip_recipients": [...], "mop_recipients": [...], "user_id"? }
    PUT    /api/v1/recipient-configurations/<id>
           Body: { "mip_recipients"?, "mop_recipients"?, "is_active"?, "user_id"? }
    GET    /api/v1/recipient-configurations/<id>/history

    POST   /api/v1/document-templates
    PUT    /api/v1/document-templates/<id>
    GET    /api/v1/document-templates/<id>/history

    GET    /api/v1/operator-alerts            ?unread=true
    POST   /api/v1/operator-alerts/<id>/read

Every configuration write snapshots into TemplateHistory inside the service.
"""

import logging

from flask import Blueprint, jsonify, request

from occupancy.blueprints import register_core_error_handlers
from occupancy.core.exceptions import NotFoundError, ValidationError
from occupancy.services import recipient_config
from occupancy.services.operator_alerts import OperatorAlertService

logger = logging.getLogger(__name__)

recipients_bp = Blueprint("recipients", __name__, url_prefix="/api/v1")
register_core_error_handlers(recipients_bp)


def _scope_from(data: dict) -> dict:
    return {
        "master_community_id": data.get("master_community_id"),
        "community_id": data.get("community_id"),
        "tower_id": data.get("tower_id"),
    }


def _optional_bool(data: dict, name: str):
    value = data.get(name)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ValidationError(f"{name} must be true or false", details={name: "boolean"})
    return value


# ═════════════════════════════════════════════════════════════════════════
# Recipient configurations
# ═════════════════════════════════════════════════════════════════════════


@recipients_bp.route("/recipient-configurations", methods=["POST"])
def create_recipient_configuration():
    data = request.get_json(silent=True) or {}
    config = recipient_config.create_recipient_configuration(
        _scope_from(data),
        mip=data.get("mip_recipients"),
        mop=data.get("mop_recipients"),
        user_id=data.get("user_id"),
    )
    return jsonify(config.to_dict()), 201


@recipients_bp.route("/recipient-configurations/<int:config_id>", methods=["PUT"])
def update_recipient_configuration(config_id):
    data = request.get_json(silent=True) or {}
    config = recipient_config.update_recipient_configuration(
        config_id,
        mip=data.get("mip_recipients"),
        mop=data.get("mop_recipients"),
        is_active=_optional_bool(data, "is_active"),
        user_id=data.get("user_id"),
    )
    return jsonify(config.to_dict())


@recipients_bp.route("/recipient-configurations/<int:config_id>/history", methods=["GET"])
def recipient_configuration_history(config_id):
    items = recipient_config.get_recipient_history(config_id)
    return jsonify({"items": [h.to_dict() for h in items], "total": len(items)})


# ═════════════════════════════════════════════════════════════════════════
# Document templates
# ═════════════════════════════════════════════════════════════════════════


@recipients_bp.route("/document-templates", methods=["POST"])
def create_document_template():
    data = request.get_json(silent=True) or {}
    template = recipient_config.create_document_template(
        data.get("template_type"),
        _scope_from(data),
        data.get("content"),
        user_id=data.get("user_id"),
    )
    return jsonify(template.to_dict()), 201


@recipients_bp.route("/document-templates/<int:template_id>", methods=["PUT"])
def update_document_template(template_id):
    data = request.get_json(silent=True) or {}
    template = recipient_config.update_document_template(
        template_id,
        content=data.get("content"),
        is_active=_optional_bool(data, "is_active"),
        user_id=data.get("user_id"),
    )
    return jsonify(template.to_dict())


@recipients_bp.route("/document-templates/<int:template_id>/history", methods=["GET"])
def document_template_history(template_id):
    items = recipient_config.get_template_history(template_id)
    return jsonify({"items": [h.to_dict() for h in items], "total": len(items)})


# ═════════════════════════════════════════════════════════════════════════
# Operator alerts
# ═════════════════════════════════════════════════════════════════════════


@recipients_bp.route("/operator-alerts", methods=["GET"])
def list_operator_alerts():
    unread_only = request.args.get("unread", "false").lower() == "true"
    alerts = OperatorAlertService.list_alerts(unread_only=unread_only)
    return jsonify({"items": [a.to_dict() for a in alerts], "total": len(alerts)})


@recipients_bp.route("/operator-alerts/<int:alert_id>/read", methods=["POST"])
def mark_operator_alert_read(alert_id):
    alert = OperatorAlertService.mark_read(alert_id)
    if alert is None:
        raise NotFoundError("OperatorNotification", alert_id)
    return jsonify(alert.to_dict())
