"""
One-time normalization of data written before the seven-state status model.

    open → new, rfi → rfi-pending, cancel → cancelled, approve → approved

Also moves renewals filed under the ``owner`` category to ``hho-owner``
(owners cannot renew; those rows were holiday-home owners).

Run with ``flask normalize-legacy-statuses``; the matching Alembic revision
applies the same mapping at upgrade time. Idempotent.
"""

import logging

from sqlalchemy import insert, select, update

from occupancy.models import db
from occupancy.models.audit import TransitionLogEntry
from occupancy.models.transition import (
    LEGACY_STATUS_MAP,
    HhoOwnerDetail,
    RequestDetail,
    TransitionRequest,
)

logger = logging.getLogger(__name__)


def _normalize_request_statuses() -> int:
    table = TransitionRequest.__table__
    total = 0
    for legacy, current in LEGACY_STATUS_MAP.items():
        result = db.session.execute(
            update(table)
            .where(table.c.status == legacy)
            .values(status=current, version=table.c.version + 1)
        )
        total += result.rowcount or 0
    return total


def _normalize_log_statuses() -> int:
    table = TransitionLogEntry.__table__
    total = 0
    for column in ("from_status", "to_status"):
        for legacy, current in LEGACY_STATUS_MAP.items():
            result = db.session.execute(
                update(table).where(table.c[column] == legacy).values({column: current})
            )
            total += result.rowcount or 0
    return total


def _normalize_renewal_categories() -> int:
    requests = TransitionRequest.__table__
    details = RequestDetail.__table__

    request_ids = list(db.session.execute(
        select(requests.c.id).where(requests.c.kind == "renewal", requests.c.category == "owner")
    ).scalars())
    if not request_ids:
        return 0

    detail_ids = list(db.session.execute(
        select(details.c.id).where(details.c.request_id.in_(request_ids), details.c.category == "owner")
    ).scalars())
    for detail_id in detail_ids:
        db.session.execute(insert(HhoOwnerDetail.__table__).values(id=detail_id))
    if detail_ids:
        db.session.execute(
            update(details).where(details.c.id.in_(detail_ids)).values(category="hho-owner")
        )

    db.session.execute(
        update(requests)
        .where(requests.c.id.in_(request_ids))
        .values(category="hho-owner", version=requests.c.version + 1)
    )
    return len(request_ids)


def normalize_legacy_statuses() -> dict[str, int]:
    """Rewrite legacy values in place; returns rows changed per kind."""
    try:
        counts = {
            "request_statuses": _normalize_request_statuses(),
            "log_statuses": _normalize_log_statuses(),
            "renewal_categories": _normalize_renewal_categories(),
        }
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Legacy normalization failed; rolled back")
        raise

    db.session.expire_all()
    logger.info(
        "Legacy normalization: %d request statuses, %d log statuses, %d renewal categories",
        counts["request_statuses"], counts["log_statuses"], counts["renewal_categories"],
    )
    return counts
