"""
Transition audit log — append and read the per-request history.

append() only flushes; the lifecycle engine owns the commit so the status
change and its log entry land together or not at all.
"""

import json
import logging
from datetime import datetime, timezone

from sqlalchemy import select

from occupancy.models import db
from occupancy.models.audit import TransitionLogEntry
from occupancy.utils.helpers import as_utc

logger = logging.getLogger(__name__)


def _latest_entry(request_id: int) -> TransitionLogEntry | None:
    stmt = (
        select(TransitionLogEntry)
        .where(TransitionLogEntry.request_id == request_id)
        .order_by(TransitionLogEntry.created_at.desc(), TransitionLogEntry.id.desc())
        .limit(1)
    )
    return db.session.execute(stmt).scalar_one_or_none()


def append(
    request_id: int,
    from_status: str | None,
    to_status: str,
    actor_id: int | None,
    actor_type: str,
    remark: str | None = None,
    changes: dict | None = None,
) -> TransitionLogEntry:
    """
    Append one log entry and flush.

    The timestamp never goes backwards for a request: if the clock reads
    earlier than the previous entry, the previous entry's time is reused and
    the id breaks the tie.
    """
    now = datetime.now(timezone.utc)
    previous = _latest_entry(request_id)
    if previous is not None and previous.created_at is not None:
        last = as_utc(previous.created_at)
        if now < last:
            now = last

    entry = TransitionLogEntry(
        request_id=request_id,
        from_status=from_status,
        to_status=to_status,
        actor_id=actor_id,
        actor_type=actor_type,
        remark=remark,
        changes_json=json.dumps(changes, default=str) if changes else None,
        created_at=now,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def history(request_id: int) -> list[TransitionLogEntry]:
    """All entries for a request, oldest first, id as tie-break."""
    stmt = (
        select(TransitionLogEntry)
        .where(TransitionLogEntry.request_id == request_id)
        .order_by(TransitionLogEntry.created_at.asc(), TransitionLogEntry.id.asc())
    )
    return list(db.session.execute(stmt).scalars())


def log_rejected(request_ref, current: str, requested: str, actor_type: str, reason: str) -> None:
    """Rejected attempts go to the diagnostic logger only."""
    logger.warning(
        "Rejected transition %s → %s: %s", current, requested, reason,
        extra={
            "request_no": request_ref,
            "from_status": current,
            "to_status": requested,
            "actor_type": actor_type,
        },
    )
