"""
Occupancy Transition Service
Operator alert service.

The operator-visible channel for notification-path problems: missing
recipient configuration, render failures and transport errors. None of
these block a transition; they land here for follow-up.
"""

from sqlalchemy import select

from occupancy.models import db
from occupancy.models.notification import OperatorNotification


class OperatorAlertService:
    """Stateless service class for operator alerts."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, title, message="", category="system", severity="warning",
               entity_type="", entity_id=None, commit=True):
        """
        Create a single alert.

        Pass ``commit=False`` to leave the commit to the caller's unit of work.
        """
        alert = OperatorNotification(
            title=title[:300],
            message=message,
            category=category,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.session.add(alert)
        if commit:
            db.session.commit()
        else:
            db.session.flush()
        return alert

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_alerts(unread_only=False, entity_type=None, entity_id=None):
        """Alerts newest first."""
        stmt = select(OperatorNotification)
        if unread_only:
            stmt = stmt.where(OperatorNotification.is_read.is_(False))
        if entity_type:
            stmt = stmt.where(OperatorNotification.entity_type == entity_type)
        if entity_id is not None:
            stmt = stmt.where(OperatorNotification.entity_id == entity_id)
        stmt = stmt.order_by(OperatorNotification.created_at.desc(), OperatorNotification.id.desc())
        return list(db.session.execute(stmt).scalars())

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(alert_id):
        alert = db.session.get(OperatorNotification, alert_id)
        if alert:
            alert.mark_read()
            db.session.commit()
        return alert
