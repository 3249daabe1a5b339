"""
Occupancy Transition Service
Outbound notification audit.

Models:
    - NotificationDispatch: one row per dispatch attempt for a transition.

Records what was sent to whom and which recipient snapshot was used, so
"which list did transition N mail?" stays answerable after configuration
edits.
"""

from datetime import datetime, timezone

from occupancy.models import db
from occupancy.models.recipients import join_emails, split_emails

DISPATCH_STATUSES = ("sent", "failed", "skipped")


class NotificationDispatch(db.Model):
    """
    Outbound notification log.

    At most one row per log entry: the dispatcher makes a single attempt
    and never retries.
    """

    __tablename__ = "notification_dispatches"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer, db.ForeignKey("transition_requests.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    log_entry_id = db.Column(
        db.Integer, db.ForeignKey("transition_log_entries.id", ondelete="CASCADE"),
        nullable=True, unique=True,
    )
    template_type = db.Column(db.String(20), nullable=False, comment="move-in | move-out")
    to_status = db.Column(db.String(30), nullable=True)

    primary_recipients = db.Column(db.Text, default="")
    cc_recipients = db.Column(db.Text, default="")
    recipient_history_id = db.Column(
        db.Integer, nullable=True,
        comment="TemplateHistory snapshot of the recipient configuration used",
    )

    status = db.Column(db.String(20), nullable=False, default="skipped", comment="sent | failed | skipped")
    warning = db.Column(db.String(60), nullable=True, comment="Warning class name, if any")
    error_message = db.Column(db.Text, nullable=True)
    message_id = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def primary(self) -> list[str]:
        return split_emails(self.primary_recipients)

    @property
    def cc(self) -> list[str]:
        return split_emails(self.cc_recipients)

    def set_recipients(self, primary, cc):
        self.primary_recipients = join_emails(primary)
        self.cc_recipients = join_emails(cc)

    def to_dict(self):
        return {
            "id": self.id,
            "request_id": self.request_id,
            "log_entry_id": self.log_entry_id,
            "template_type": self.template_type,
            "to_status": self.to_status,
            "primary": self.primary,
            "cc": self.cc,
            "recipient_history_id": self.recipient_history_id,
            "status": self.status,
            "warning": self.warning,
            "error_message": self.error_message,
            "message_id": self.message_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
        }

    def __repr__(self):
        return f"<NotificationDispatch {self.id}: request={self.request_id} {self.status}>"
