"""
Occupancy Transition Service
Recipient & template configuration models.

Models:
    - RecipientConfiguration: MIP / MOP recipient lists per scope tuple
    - DocumentTemplate:       move-in / move-out / welcome-pack template content per scope
    - TemplateHistory:        immutable point-in-time snapshot of either of the above

Scope tuple: (master_community_id, community_id, tower_id).
    community_id NULL → master-community level
    tower_id NULL     → community level

Business rules:
    - At most one active configuration per scope tuple (and per template type
      for templates), enforced by a partial unique index plus a service check.
    - Every create/update writes a TemplateHistory row in the same commit.
      History rows are copies by value; later edits never change them.
"""

import json
from datetime import datetime, timezone

from occupancy.models import db

# ── Constants ────────────────────────────────────────────────────────────────

DOCUMENT_TEMPLATE_TYPES = ("move-in", "move-out", "welcome-pack")
HISTORY_TEMPLATE_TYPES = DOCUMENT_TEMPLATE_TYPES + ("recipient-mail",)


def split_emails(value) -> list[str]:
    """Comma-separated column → list, blanks dropped, order kept."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def join_emails(values) -> str:
    return ",".join(values or [])


class RecipientConfiguration(db.Model):
    """Per-scope move-in-pack (MIP) and move-out-pack (MOP) recipient lists."""

    __tablename__ = "recipient_configurations"

    id = db.Column(db.Integer, primary_key=True)
    master_community_id = db.Column(db.Integer, nullable=False, index=True)
    community_id = db.Column(db.Integer, nullable=True, index=True)
    tower_id = db.Column(db.Integer, nullable=True, index=True)

    mip_recipients = db.Column(db.Text, default="", comment="Comma-separated normalized emails")
    mop_recipients = db.Column(db.Text, default="", comment="Comma-separated normalized emails")

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.Integer, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    @property
    def mip_list(self) -> list[str]:
        return split_emails(self.mip_recipients)

    @property
    def mop_list(self) -> list[str]:
        return split_emails(self.mop_recipients)

    @property
    def scope_level(self) -> str:
        if self.tower_id is not None:
            return "tower"
        if self.community_id is not None:
            return "community"
        return "master-community"

    def snapshot(self) -> dict:
        """Values copied into TemplateHistory.template_data."""
        return {
            "mip_recipients": self.mip_list,
            "mop_recipients": self.mop_list,
            "is_active": self.is_active,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "master_community_id": self.master_community_id,
            "community_id": self.community_id,
            "tower_id": self.tower_id,
            "scope_level": self.scope_level,
            "mip_recipients": self.mip_list,
            "mop_recipients": self.mop_list,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return (
            f"<RecipientConfiguration {self.id}: "
            f"{self.master_community_id}/{self.community_id}/{self.tower_id}>"
        )


class DocumentTemplate(db.Model):
    """Text/HTML body handed to the renderer for a given scope and template type."""

    __tablename__ = "document_templates"

    id = db.Column(db.Integer, primary_key=True)
    template_type = db.Column(db.String(20), nullable=False, comment="move-in | move-out | welcome-pack")
    master_community_id = db.Column(db.Integer, nullable=False, index=True)
    community_id = db.Column(db.Integer, nullable=True)
    tower_id = db.Column(db.Integer, nullable=True)

    content = db.Column(db.Text, nullable=False, default="")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.Integer, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def snapshot(self) -> dict:
        return {"content": self.content, "is_active": self.is_active}

    def to_dict(self):
        return {
            "id": self.id,
            "template_type": self.template_type,
            "master_community_id": self.master_community_id,
            "community_id": self.community_id,
            "tower_id": self.tower_id,
            "content": self.content,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<DocumentTemplate {self.id}: {self.template_type}>"


# One active row per scope tuple; NULL levels compare equal through coalesce
db.Index(
    "uq_recipient_config_active_scope",
    RecipientConfiguration.master_community_id,
    db.func.coalesce(RecipientConfiguration.community_id, 0),
    db.func.coalesce(RecipientConfiguration.tower_id, 0),
    unique=True,
    sqlite_where=RecipientConfiguration.is_active.is_(True),
    postgresql_where=RecipientConfiguration.is_active.is_(True),
)

db.Index(
    "uq_document_template_active_scope",
    DocumentTemplate.template_type,
    DocumentTemplate.master_community_id,
    db.func.coalesce(DocumentTemplate.community_id, 0),
    db.func.coalesce(DocumentTemplate.tower_id, 0),
    unique=True,
    sqlite_where=DocumentTemplate.is_active.is_(True),
    postgresql_where=DocumentTemplate.is_active.is_(True),
)


class TemplateHistory(db.Model):
    """
    Immutable snapshot of a recipient configuration or document template.

    Linked to its source by value (plain integer ids, no FK), so the row stays
    meaningful even if the source is later rewritten.
    """

    __tablename__ = "template_history"
    __table_args__ = (
        db.Index("ix_template_history_scope", "template_type", "master_community_id",
                 "community_id", "tower_id"),
        db.Index("ix_template_history_recipient_config", "recipient_configuration_id"),
        db.Index("ix_template_history_document_template", "document_template_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    template_type = db.Column(
        db.String(20), nullable=False,
        comment="move-in | move-out | welcome-pack | recipient-mail",
    )
    master_community_id = db.Column(db.Integer, nullable=False)
    community_id = db.Column(db.Integer, nullable=True)
    tower_id = db.Column(db.Integer, nullable=True)

    template_data = db.Column(db.Text, nullable=False, default="{}")

    recipient_configuration_id = db.Column(db.Integer, nullable=True)
    document_template_id = db.Column(db.Integer, nullable=True)

    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def data(self) -> dict:
        try:
            return json.loads(self.template_data or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self):
        return {
            "id": self.id,
            "template_type": self.template_type,
            "master_community_id": self.master_community_id,
            "community_id": self.community_id,
            "tower_id": self.tower_id,
            "template_data": self.data,
            "recipient_configuration_id": self.recipient_configuration_id,
            "document_template_id": self.document_template_id,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<TemplateHistory {self.id}: {self.template_type}>"
