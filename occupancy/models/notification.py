"""
Occupancy Transition Service
Operator notification model.

Models:
    - OperatorNotification: in-app alert for operators with read tracking.

Used as the operator-visible channel for notification-path problems
(missing recipient configuration, transport failures) that must not block
a committed transition.
"""

from datetime import datetime, timezone

from occupancy.models import db

# ── Constants ────────────────────────────────────────────────────────────────

OPERATOR_CATEGORIES = {"recipients", "transport", "render", "system"}
OPERATOR_SEVERITIES = {"info", "warning", "error"}


class OperatorNotification(db.Model):
    """One alert per problem occurrence."""

    __tablename__ = "operator_notifications"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    category = db.Column(db.String(30), default="system")
    severity = db.Column(db.String(20), default="warning")

    # Link to source entity
    entity_type = db.Column(db.String(30), default="", comment="transition_request / recipient_configuration")
    entity_id = db.Column(db.Integer, nullable=True)

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "message": self.message,
            "category": self.category,
            "severity": self.severity,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<OperatorNotification {self.id}: {self.title[:40]}>"
