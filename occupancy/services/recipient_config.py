"""
Recipient & template configuration — versioned writes with snapshot-on-write.

Every create/update of a RecipientConfiguration or DocumentTemplate writes a
TemplateHistory row in the same commit, so a resolver reading mid-update sees
either the old configuration or the new one, never half of each, and past
notifications can always be traced to the exact list they used.

Creating a configuration for a scope that already has an active one
deactivates the old row (snapshotting it) before inserting the new one.
"""

import json
import logging

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import select

from occupancy.core.exceptions import NotFoundError, ValidationError
from occupancy.models import db
from occupancy.models.recipients import (
    DOCUMENT_TEMPLATE_TYPES,
    DocumentTemplate,
    RecipientConfiguration,
    TemplateHistory,
    join_emails,
    split_emails,
)
from occupancy.services.document_service import check_template_source
from occupancy.services.scope_resolution import normalize_scope

logger = logging.getLogger(__name__)


# ── Helpers ──────────────────────────────────────────────────────────────────


def normalize_email_list(values, field: str) -> list[str]:
    """
    Validate a list (or comma-separated string) of emails.

    Returns normalized addresses, case-insensitive duplicates dropped,
    first occurrence kept.
    """
    if values is None:
        return []
    if isinstance(values, str):
        values = split_emails(values)

    result: list[str] = []
    seen: set[str] = set()
    bad: list[str] = []
    for raw in values:
        raw = (raw or "").strip()
        if not raw:
            continue
        try:
            email = validate_email(raw, check_deliverability=False).normalized
        except EmailNotValidError:
            bad.append(raw)
            continue
        key = email.casefold()
        if key not in seen:
            seen.add(key)
            result.append(email)
    if bad:
        raise ValidationError(
            f"Invalid email address in {field}",
            details={field: f"invalid: {', '.join(bad)}"},
        )
    return result


def _exact_scope_filters(model, scope: dict) -> list:
    filters = [model.master_community_id == scope["master_community_id"]]
    for column in ("community_id", "tower_id"):
        value = scope[column]
        attr = getattr(model, column)
        filters.append(attr.is_(None) if value is None else attr == value)
    return filters


def _snapshot(template_type: str, source, user_id: int | None, **linkage) -> TemplateHistory:
    entry = TemplateHistory(
        template_type=template_type,
        master_community_id=source.master_community_id,
        community_id=source.community_id,
        tower_id=source.tower_id,
        template_data=json.dumps(source.snapshot()),
        created_by=user_id,
        **linkage,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def _commit():
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Configuration write failed; rolled back")
        raise


# ═════════════════════════════════════════════════════════════════════════════
# Recipient configuration
# ═════════════════════════════════════════════════════════════════════════════


def snapshot_recipient_configuration(config: RecipientConfiguration, user_id=None) -> TemplateHistory:
    return _snapshot("recipient-mail", config, user_id, recipient_configuration_id=config.id)


def active_configuration_for_scope(scope: dict) -> RecipientConfiguration | None:
    """Active configuration at exactly this scope (no fallback)."""
    stmt = select(RecipientConfiguration).where(
        RecipientConfiguration.is_active.is_(True),
        *_exact_scope_filters(RecipientConfiguration, scope),
    )
    return db.session.execute(stmt).scalars().first()


def _deactivate_recipient_configuration(config: RecipientConfiguration, user_id) -> None:
    config.is_active = False
    config.updated_by = user_id
    db.session.flush()
    snapshot_recipient_configuration(config, user_id)


def create_recipient_configuration(scope: dict, mip=None, mop=None, user_id=None) -> RecipientConfiguration:
    """Create the active configuration for a scope, replacing any current one."""
    scope = normalize_scope(scope)
    mip_list = normalize_email_list(mip, "mip_recipients")
    mop_list = normalize_email_list(mop, "mop_recipients")

    current = active_configuration_for_scope(scope)
    if current is not None:
        _deactivate_recipient_configuration(current, user_id)

    config = RecipientConfiguration(
        **scope,
        mip_recipients=join_emails(mip_list),
        mop_recipients=join_emails(mop_list),
        is_active=True,
        created_by=user_id,
        updated_by=user_id,
    )
    db.session.add(config)
    db.session.flush()
    snapshot_recipient_configuration(config, user_id)
    _commit()

    logger.info(
        "Recipient configuration %s created for %s (replaced=%s)",
        config.id, scope, current.id if current else None,
    )
    return config


def update_recipient_configuration(
    config_id: int,
    *,
    mip=None,
    mop=None,
    is_active: bool | None = None,
    user_id=None,
) -> RecipientConfiguration:
    """Apply the given changes; None leaves a field as it is."""
    config = db.session.get(RecipientConfiguration, config_id)
    if config is None:
        raise NotFoundError("RecipientConfiguration", config_id)

    if mip is not None:
        config.mip_recipients = join_emails(normalize_email_list(mip, "mip_recipients"))
    if mop is not None:
        config.mop_recipients = join_emails(normalize_email_list(mop, "mop_recipients"))

    if is_active and not config.is_active:
        scope = {
            "master_community_id": config.master_community_id,
            "community_id": config.community_id,
            "tower_id": config.tower_id,
        }
        current = active_configuration_for_scope(scope)
        if current is not None and current.id != config.id:
            _deactivate_recipient_configuration(current, user_id)
    if is_active is not None:
        config.is_active = bool(is_active)

    config.updated_by = user_id
    db.session.flush()
    snapshot_recipient_configuration(config, user_id)
    _commit()

    logger.info("Recipient configuration %s updated", config.id)
    return config


def get_recipient_history(config_id: int) -> list[TemplateHistory]:
    """Snapshots of a configuration, oldest first."""
    if db.session.get(RecipientConfiguration, config_id) is None:
        raise NotFoundError("RecipientConfiguration", config_id)
    stmt = (
        select(TemplateHistory)
        .where(
            TemplateHistory.template_type == "recipient-mail",
            TemplateHistory.recipient_configuration_id == config_id,
        )
        .order_by(TemplateHistory.created_at.asc(), TemplateHistory.id.asc())
    )
    return list(db.session.execute(stmt).scalars())


def latest_recipient_snapshot_id(config_id: int) -> int | None:
    stmt = (
        select(TemplateHistory.id)
        .where(
            TemplateHistory.template_type == "recipient-mail",
            TemplateHistory.recipient_configuration_id == config_id,
        )
        .order_by(TemplateHistory.id.desc())
        .limit(1)
    )
    return db.session.execute(stmt).scalar_one_or_none()


# ═════════════════════════════════════════════════════════════════════════════
# Document templates
# ═════════════════════════════════════════════════════════════════════════════


def _check_template_type(template_type: str) -> None:
    if template_type not in DOCUMENT_TEMPLATE_TYPES:
        raise ValidationError(
            f"Unknown template type '{template_type}'",
            details={"template_type": f"one of {', '.join(DOCUMENT_TEMPLATE_TYPES)}"},
        )


def snapshot_document_template(template: DocumentTemplate, user_id=None) -> TemplateHistory:
    return _snapshot(template.template_type, template, user_id, document_template_id=template.id)


def _active_template_for_scope(template_type: str, scope: dict) -> DocumentTemplate | None:
    stmt = select(DocumentTemplate).where(
        DocumentTemplate.template_type == template_type,
        DocumentTemplate.is_active.is_(True),
        *_exact_scope_filters(DocumentTemplate, scope),
    )
    return db.session.execute(stmt).scalars().first()


def create_document_template(template_type: str, scope: dict, content: str, user_id=None) -> DocumentTemplate:
    _check_template_type(template_type)
    scope = normalize_scope(scope)
    if not (content or "").strip():
        raise ValidationError("Template content is required", details={"content": "required"})
    check_template_source(content)

    current = _active_template_for_scope(template_type, scope)
    if current is not None:
        current.is_active = False
        current.updated_by = user_id
        db.session.flush()
        snapshot_document_template(current, user_id)

    template = DocumentTemplate(
        template_type=template_type,
        **scope,
        content=content,
        is_active=True,
        created_by=user_id,
        updated_by=user_id,
    )
    db.session.add(template)
    db.session.flush()
    snapshot_document_template(template, user_id)
    _commit()

    logger.info("Document template %s (%s) created for %s", template.id, template_type, scope)
    return template


def update_document_template(
    template_id: int,
    *,
    content: str | None = None,
    is_active: bool | None = None,
    user_id=None,
) -> DocumentTemplate:
    template = db.session.get(DocumentTemplate, template_id)
    if template is None:
        raise NotFoundError("DocumentTemplate", template_id)

    if content is not None:
        if not content.strip():
            raise ValidationError("Template content is required", details={"content": "required"})
        check_template_source(content)
        template.content = content

    if is_active and not template.is_active:
        scope = {
            "master_community_id": template.master_community_id,
            "community_id": template.community_id,
            "tower_id": template.tower_id,
        }
        current = _active_template_for_scope(template.template_type, scope)
        if current is not None and current.id != template.id:
            current.is_active = False
            current.updated_by = user_id
            db.session.flush()
            snapshot_document_template(current, user_id)
    if is_active is not None:
        template.is_active = bool(is_active)

    template.updated_by = user_id
    db.session.flush()
    snapshot_document_template(template, user_id)
    _commit()
    return template


def get_template_history(template_id: int) -> list[TemplateHistory]:
    if db.session.get(DocumentTemplate, template_id) is None:
        raise NotFoundError("DocumentTemplate", template_id)
    stmt = (
        select(TemplateHistory)
        .where(TemplateHistory.document_template_id == template_id)
        .order_by(TemplateHistory.created_at.asc(), TemplateHistory.id.asc())
    )
    return list(db.session.execute(stmt).scalars())
