"""
Occupancy Transition Service
Transition audit trail.

Models:
    - TransitionLogEntry: immutable, append-only record of every accepted
      status change on a TransitionRequest.

Rejected attempts never reach this table; they go to the diagnostic logger
only, so the trail is a faithful state history.
"""

import json
from datetime import datetime, timezone

from occupancy.models import db


class TransitionLogEntry(db.Model):
    """
    One row per accepted transition.

    ``from_status`` is NULL for the entry written at submission.
    ``changes_json`` carries the field diff of an amendment
    ({field: {old, new}}); empty for plain status changes.
    History order is (created_at, id).
    """

    __tablename__ = "transition_log_entries"
    __table_args__ = (
        db.Index("ix_transition_log_request_ts", "request_id", "created_at", "id"),
        db.Index("ix_transition_log_actor", "actor_type", "actor_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer,
        db.ForeignKey("transition_requests.id", ondelete="RESTRICT"),
        nullable=False,
    )

    from_status = db.Column(db.String(30), nullable=True)
    to_status = db.Column(db.String(30), nullable=False)

    actor_id = db.Column(db.Integer, nullable=True, comment="NULL for system actions")
    actor_type = db.Column(
        db.String(30), nullable=False,
        comment="community-admin | super-admin | system | user | security",
    )
    remark = db.Column(db.Text, nullable=True)
    changes_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    request = db.relationship("TransitionRequest", back_populates="log_entries")

    @property
    def changes(self) -> dict:
        try:
            return json.loads(self.changes_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_id": self.actor_id,
            "actor_type": self.actor_type,
            "remark": self.remark,
            "changes": self.changes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return (
            f"<TransitionLogEntry {self.id}: request={self.request_id} "
            f"{self.from_status} → {self.to_status} by {self.actor_type}>"
        )
