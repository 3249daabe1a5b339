"""
Notification dispatcher — "on transition X, render Y, resolve recipients, send".

Runs after the transition has committed. notify() never raises: a missing
recipient configuration, a render failure or a transport error becomes a
warning on the DispatchResult, a NotificationDispatch row and an operator
alert. A recorded decision is never lost because an email was.

One transport attempt per log entry; retries belong to the transport.

Execution mode (``NOTIFICATION_DISPATCH_MODE``):
    inline      notify() runs on the caller's thread right after commit
    background  notify() runs on a daemon thread inside an app context
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select

from occupancy.core.exceptions import (
    RecipientResolutionError,
    RecipientResolutionWarning,
    TransportError,
    ValidationError,
)
from occupancy.models import db
from occupancy.models.dispatch import NotificationDispatch
from occupancy.services import recipient_resolver
from occupancy.services.collaborators import get_collaborators
from occupancy.services.document_service import active_template, wants_welcome_pack
from occupancy.services.operator_alerts import OperatorAlertService

logger = logging.getLogger(__name__)


# ── Value objects ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TransitionEvent:
    """Everything the dispatcher needs, captured before the session moves on."""

    request_id: int
    log_entry_id: int | None
    from_status: str | None
    to_status: str
    kind: str
    category: str
    scope: dict
    requester_email: str | None
    unit_id: int | None
    request_no: str | None = None
    remark: str | None = None
    unit_number: str | None = None
    move_date: str | None = None
    primary_email: str | None = None

    @classmethod
    def from_request(cls, request, entry) -> "TransitionEvent":
        return cls(
            request_id=request.id,
            log_entry_id=entry.id if entry is not None else None,
            from_status=entry.from_status if entry is not None else None,
            to_status=request.status if entry is None else entry.to_status,
            kind=request.kind,
            category=request.category,
            scope=dict(request.scope),
            requester_email=request.requester_email,
            unit_id=request.unit_id,
            request_no=request.request_no,
            remark=entry.remark if entry is not None else None,
            unit_number=request.unit.unit_number if request.unit is not None else None,
            move_date=request.move_date.isoformat() if request.move_date else None,
            primary_email=request.primary_email,
        )

    @property
    def addressee(self) -> str | None:
        return self.primary_email or self.requester_email

    def context(self) -> dict:
        return {
            "request_id": self.request_id,
            "request_no": self.request_no or "",
            "kind": self.kind,
            "category": self.category,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "remark": self.remark,
            "unit_number": self.unit_number or "",
            "move_date": self.move_date or "",
            "requester_email": self.requester_email or "",
            "primary_email": self.addressee or "",
        }


@dataclass
class DispatchResult:
    """Outcome of one notify() call. Always check ``status`` first."""

    status: str
    template_type: str | None = None
    primary: list = field(default_factory=list)
    cc: list = field(default_factory=list)
    warnings: list = field(default_factory=list)
    dispatch_id: int | None = None
    message_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "sent"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "template_type": self.template_type,
            "primary": list(self.primary),
            "cc": list(self.cc),
            "warnings": [{"type": type(w).__name__, "message": str(w)} for w in self.warnings],
            "dispatch_id": self.dispatch_id,
            "message_id": self.message_id,
        }


# ── Rules ─────────────────────────────────────────────────────────────────────


def template_type_for(kind: str) -> str:
    """move-out requests use the move-out template; move-in and renewal the move-in one."""
    return "move-out" if kind == "move-out" else "move-in"


def should_notify(to_status: str) -> bool:
    """A submission that stays in 'new' is not announced."""
    return to_status != "new"


_ALERT_CATEGORY = {
    RecipientResolutionWarning: "recipients",
    TransportError: "transport",
}


def _already_dispatched(log_entry_id) -> bool:
    if log_entry_id is None:
        return False
    stmt = select(NotificationDispatch.id).where(NotificationDispatch.log_entry_id == log_entry_id)
    return db.session.execute(stmt).first() is not None


def _record(event: TransitionEvent, result: DispatchResult, history_id, error_message) -> None:
    row = NotificationDispatch(
        request_id=event.request_id,
        log_entry_id=event.log_entry_id,
        template_type=result.template_type,
        to_status=event.to_status,
        recipient_history_id=history_id,
        status=result.status,
        warning=",".join(sorted({type(w).__name__ for w in result.warnings})) or None,
        error_message=error_message[:1000] if error_message else None,
        message_id=result.message_id,
        sent_at=datetime.now(timezone.utc) if result.status == "sent" else None,
    )
    row.set_recipients(result.primary, result.cc)
    db.session.add(row)
    db.session.flush()
    result.dispatch_id = row.id

    for warning in result.warnings:
        OperatorAlertService.create(
            title=f"Notification problem on {event.request_no or event.request_id}: {type(warning).__name__}",
            message=str(warning),
            category=_ALERT_CATEGORY.get(type(warning), "render"),
            severity="error" if isinstance(warning, TransportError) else "warning",
            entity_type="transition_request",
            entity_id=event.request_id,
            commit=False,
        )
    db.session.commit()


# ── Dispatch ──────────────────────────────────────────────────────────────────


def notify(event: TransitionEvent) -> DispatchResult:
    """Render, resolve and send once. Never raises."""
    template_type = template_type_for(event.kind)
    log_extra = {
        "request_id": event.request_id,
        "request_no": event.request_no,
        "to_status": event.to_status,
        "template_type": template_type,
    }

    if not should_notify(event.to_status):
        return DispatchResult(status="skipped", template_type=template_type)

    try:
        if _already_dispatched(event.log_entry_id):
            logger.info("Notification for log entry %s already dispatched", event.log_entry_id,
                        extra=log_extra)
            return DispatchResult(status="skipped", template_type=template_type)

        collaborators = get_collaborators()
        result = DispatchResult(status="failed", template_type=template_type)
        error_message = None

        # 1. Recipients
        try:
            resolution = recipient_resolver.resolve(
                event.category, event.scope, event.kind,
                requester_email=event.addressee,
                unit_id=event.unit_id,
                ownership=collaborators.ownership,
            )
        except (RecipientResolutionError, ValidationError) as exc:
            result.warnings.append(RecipientResolutionWarning(str(exc)))
            resolution = recipient_resolver.direct_recipients(
                event.category,
                requester_email=event.addressee,
                unit_id=event.unit_id,
                ownership=collaborators.ownership,
            )
        result.primary = list(resolution.primary)
        result.cc = list(resolution.cc)

        # 2. Render
        artifact = None
        try:
            data = event.context()
            template = active_template(template_type, event.scope)
            if template is not None:
                data["template_content"] = template.content
            if wants_welcome_pack(event.kind, event.to_status):
                welcome_pack = active_template("welcome-pack", event.scope)
                if welcome_pack is not None:
                    data["welcome_pack_content"] = welcome_pack.content
            artifact = collaborators.renderer.render(template_type, data)
        except Exception as exc:
            result.warnings.append(exc)
            error_message = f"render failed: {exc}"

        # 3. Send, once
        if artifact is not None:
            if not result.primary and not result.cc:
                result.status = "skipped"
                error_message = "no recipients"
            else:
                try:
                    outcome = collaborators.transport.send(artifact, result.primary, result.cc)
                    if outcome.delivered:
                        result.status = "sent"
                        result.message_id = outcome.message_id
                    else:
                        error_message = outcome.error or "transport reported failure"
                        result.warnings.append(TransportError(error_message))
                except Exception as exc:
                    error_message = str(exc)
                    result.warnings.append(exc if isinstance(exc, TransportError) else TransportError(str(exc)))

        _record(event, result, resolution.history_id, error_message)

        logger.info(
            "Notification %s for %s → %s (primary=%d cc=%d warnings=%d)",
            result.status, event.request_no, event.to_status,
            len(result.primary), len(result.cc), len(result.warnings),
            extra={**log_extra, "dispatch_status": result.status},
        )
        return result
    except Exception:
        logger.exception("Notification dispatch failed for request %s", event.request_id, extra=log_extra)
        db.session.rollback()
        return DispatchResult(status="failed", template_type=template_type)


def _notify_in_background(app, events: list[TransitionEvent]) -> None:
    with app.app_context():
        for event in events:
            notify(event)


def dispatch(events: list[TransitionEvent]) -> list[DispatchResult]:
    """
    Hand committed transitions to the dispatcher per the configured mode.

    Returns the results in inline mode; an empty list in background mode.
    """
    events = [event for event in events if should_notify(event.to_status)]
    if not events:
        return []

    mode = current_app.config.get("NOTIFICATION_DISPATCH_MODE", "background")
    if mode == "inline":
        return [notify(event) for event in events]

    app = current_app._get_current_object()
    thread = threading.Thread(target=_notify_in_background, args=(app, events), daemon=True)
    thread.start()
    return []
