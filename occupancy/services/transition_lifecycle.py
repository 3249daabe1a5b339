"""
Transition Lifecycle Service — the state machine orchestrator.

Public operations:
    submit()               create a request (status=new, or approved via auto-approval)
    transition()           move a request to a new status
    history()              ordered audit trail
    resolve_recipients()   preview who would be mailed
    get_request()

transition() runs as one unit of work:
    1. load the request with SELECT … FOR UPDATE (fresh from the database)
    2. reject if ``expected_version`` is stale   → ConcurrentModificationError
    3. status model check                         → InvalidTransitionError
    4. apply an amendment (rfi-submitted only), re-validated by the policy
    5. persist the status (version bump) and append the log entry
    6. linked side effects (move-out approval closes its move-in)
    7. commit
A StaleDataError at flush means another writer won the race; it becomes
ConcurrentModificationError. Any other store error rolls everything back and
propagates. Notifications are dispatched only after the commit.

Usage:
    from occupancy.services.status_model import Actor
    from occupancy.services.transition_lifecycle import submit, transition

    req = submit("tenant", payload, kind="move-in", unit_id=7, user_id=3,
                 requester_email="tenant@example.com")
    transition(req.id, "rfi-pending", Actor(12, "community-admin"), remark="Upload EID")
"""

import logging

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import select
from sqlalchemy.orm import lazyload
from sqlalchemy.orm.exc import StaleDataError

from occupancy.core.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from occupancy.models import db
from occupancy.models.transition import (
    CANCELLED_STATUSES,
    DETAIL_CLASSES,
    REQUEST_NO_PREFIX,
    TERMINAL_STATUSES,
    TransitionRequest,
)
from occupancy.models.unit import Unit
from occupancy.services import audit_log, recipient_resolver, request_policy
from occupancy.services.notification_dispatcher import TransitionEvent, dispatch
from occupancy.services.scope_resolution import normalize_scope
from occupancy.services.status_model import SYSTEM_ACTOR, Actor, explain_rejection
from occupancy.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)


# ── Lookups ──────────────────────────────────────────────────────────────────


def get_request(request_id: int) -> TransitionRequest:
    request = db.session.get(TransitionRequest, request_id)
    if request is None:
        raise NotFoundError("TransitionRequest", request_id)
    return request


def lock_statement(request_id: int):
    """
    Row-lock query for one request.

    Only ``transition_requests`` is locked, and the eager ``unit`` join is
    dropped: PostgreSQL refuses FOR UPDATE on the nullable side of an outer join.
    """
    return (
        select(TransitionRequest)
        .where(TransitionRequest.id == request_id)
        .options(lazyload(TransitionRequest.unit))
        .with_for_update(of=TransitionRequest)
        .execution_options(populate_existing=True)
    )


def _lock_request(request_id: int) -> TransitionRequest:
    request = db.session.execute(lock_statement(request_id)).scalar_one_or_none()
    if request is None:
        raise NotFoundError("TransitionRequest", request_id)
    return request


def build_request_no(request: TransitionRequest, unit: Unit) -> str:
    """MIN-<unit>-<id>, MOUT-<unit>-<id>, ARR-<id:06d>."""
    prefix = REQUEST_NO_PREFIX[request.kind]
    if request.kind == "renewal":
        return f"{prefix}-{request.id:06d}"
    return f"{prefix}-{unit.unit_number}-{request.id}"


# ── Submission rules ─────────────────────────────────────────────────────────


def _check_renewal(unit_id: int, user_id: int, linked_request_id) -> int:
    if linked_request_id is None:
        raise ValidationError(
            "A renewal must reference the originating move-in",
            details={"linked_request_id": "required"},
        )
    linked = db.session.get(TransitionRequest, linked_request_id)
    if (
        linked is None
        or linked.kind != "move-in"
        or linked.unit_id != unit_id
        or linked.status not in ("approved", "closed")
    ):
        raise ValidationError(
            "Renewal requires an approved move-in for the same unit",
            details={"linked_request_id": "no approved move-in for this unit"},
        )

    approved_renewal = db.session.execute(
        select(TransitionRequest.id).where(
            TransitionRequest.kind == "renewal",
            TransitionRequest.unit_id == unit_id,
            TransitionRequest.user_id == user_id,
            TransitionRequest.status == "approved",
        )
    ).first()
    if approved_renewal is not None:
        raise ValidationError(
            "An approved renewal already exists for this unit",
            details={"unit_id": "renewal already approved"},
        )

    move_out = db.session.execute(
        select(TransitionRequest.id).where(
            TransitionRequest.kind == "move-out",
            TransitionRequest.unit_id == unit_id,
            TransitionRequest.status.not_in(CANCELLED_STATUSES),
        )
    ).first()
    if move_out is not None:
        raise ValidationError(
            "Cannot renew: a move-out exists for this unit",
            details={"unit_id": "move-out in progress"},
        )
    return linked.id


def _check_move_out(unit_id: int, linked_request_id) -> int | None:
    open_move_out = db.session.execute(
        select(TransitionRequest.id).where(
            TransitionRequest.kind == "move-out",
            TransitionRequest.unit_id == unit_id,
            TransitionRequest.status.not_in(TERMINAL_STATUSES),
        )
    ).first()
    if open_move_out is not None:
        raise ValidationError(
            "A move-out request is already open for this unit",
            details={"unit_id": "open move-out exists"},
        )

    if linked_request_id is not None:
        linked = db.session.get(TransitionRequest, linked_request_id)
        if linked is None or linked.kind != "move-in" or linked.unit_id != unit_id:
            raise ValidationError(
                "Move-out must reference a move-in for the same unit",
                details={"linked_request_id": "not a move-in for this unit"},
            )
        return linked.id

    # Default link: the unit's current approved move-in
    return db.session.execute(
        select(TransitionRequest.id)
        .where(
            TransitionRequest.kind == "move-in",
            TransitionRequest.unit_id == unit_id,
            TransitionRequest.status == "approved",
        )
        .order_by(TransitionRequest.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def _normalize_requester_email(value) -> str:
    try:
        return validate_email((value or "").strip(), check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid requester email: {e}", details={"requester_email": "invalid"})


# ═════════════════════════════════════════════════════════════════════════════
# Submit
# ═════════════════════════════════════════════════════════════════════════════


def submit(
    category: str,
    detail: dict,
    scope: dict | None = None,
    *,
    kind: str,
    unit_id: int,
    user_id: int,
    requester_email: str,
    move_date=None,
    comments: str | None = None,
    linked_request_id: int | None = None,
    manual_review: bool = False,
) -> TransitionRequest:
    """
    Create a transition request.

    Validation failures raise before anything is written. An eligible
    request is approved in the same commit: one log entry, new → approved,
    actor_type system. Otherwise one entry (→ new) by the requester.
    """
    clean = request_policy.validate_detail(category, detail, kind)
    requester_email = _normalize_requester_email(requester_email)
    try:
        move_date = parse_date_input(move_date)
    except ValueError as e:
        raise ValidationError(str(e), details={"move_date": "invalid date"})

    unit = db.session.get(Unit, unit_id)
    if unit is None:
        raise NotFoundError("Unit", unit_id)
    if not unit.is_active:
        raise ValidationError("Unit is not active", details={"unit_id": "inactive"})
    scope = normalize_scope(scope) if scope else unit.scope

    if kind == "renewal":
        linked_request_id = _check_renewal(unit.id, user_id, linked_request_id)
    elif kind == "move-out":
        linked_request_id = _check_move_out(unit.id, linked_request_id)

    auto_approve = request_policy.is_auto_approvable(
        category, clean, kind=kind, manual_review=manual_review,
    )

    request = TransitionRequest(
        kind=kind,
        category=category,
        unit_id=unit.id,
        user_id=user_id,
        requester_email=requester_email,
        status="new",
        auto_approved=False,
        manual_review=bool(manual_review),
        move_date=move_date,
        comments=comments,
        linked_request_id=linked_request_id,
        **scope,
    )
    request.detail = DETAIL_CLASSES[category](**clean)

    try:
        db.session.add(request)
        db.session.flush()
        request.request_no = build_request_no(request, unit)
        if auto_approve:
            request.status = "approved"
            request.auto_approved = True
            entry = audit_log.append(
                request.id, "new", "approved", SYSTEM_ACTOR.actor_id, SYSTEM_ACTOR.actor_type,
                remark="Auto-approved on submission",
            )
        else:
            entry = audit_log.append(
                request.id, None, "new", user_id, "user", remark=comments,
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Submitted %s %s request %s (status=%s)", kind, category, request.request_no, request.status,
        extra={"request_id": request.id, "request_no": request.request_no, "to_status": request.status},
    )

    dispatch([TransitionEvent.from_request(request, entry)])
    return request


# ═════════════════════════════════════════════════════════════════════════════
# Transition
# ═════════════════════════════════════════════════════════════════════════════


def _apply_amendment(request: TransitionRequest, amendment: dict) -> dict:
    """Re-validate the merged payload and write changed fields; return the diff."""
    detail = request.detail
    before = detail.payload()
    merged = {name: value for name, value in before.items() if value is not None}
    merged.update(amendment)
    clean = request_policy.validate_detail(request.category, merged, request.kind)

    changes = {}
    for name, new_value in clean.items():
        old_value = before.get(name)
        if new_value != old_value:
            setattr(detail, name, new_value)
            changes[name] = {"old": old_value, "new": new_value}
    return changes


def _close_linked_move_in(move_out: TransitionRequest):
    """Approving a move-out closes the move-in it completes."""
    if not move_out.linked_request_id:
        return None
    move_in = _lock_request(move_out.linked_request_id)
    if move_in.kind != "move-in" or move_in.status != "approved":
        return None
    move_in.status = "closed"
    entry = audit_log.append(
        move_in.id, "approved", "closed", SYSTEM_ACTOR.actor_id, SYSTEM_ACTOR.actor_type,
        remark=f"Closed by move-out {move_out.request_no}",
    )
    return move_in, entry


def transition(
    request_id: int,
    requested_status: str,
    actor: Actor,
    *,
    remark: str | None = None,
    amendment: dict | None = None,
    expected_version: int | None = None,
) -> TransitionRequest:
    """
    Move a request to ``requested_status`` on behalf of ``actor``.

    Raises:
        NotFoundError, InvalidTransitionError, ValidationError,
        ConcurrentModificationError
    """
    applied = []
    try:
        request = _lock_request(request_id)

        if expected_version is not None and request.version != expected_version:
            raise ConcurrentModificationError(request.id, expected_version, request.version)

        current = request.status
        reason = explain_rejection(current, requested_status, actor.actor_type)
        if reason is not None:
            audit_log.log_rejected(request.request_no, current, requested_status, actor.actor_type, reason)
            raise InvalidTransitionError(
                request.request_no or request.id, current, requested_status, actor.actor_type, reason,
            )

        changes = None
        if amendment:
            if requested_status != "rfi-submitted":
                raise ValidationError(
                    "Request details can only be amended when submitting requested information",
                    details={"amendment": "only allowed with rfi-submitted"},
                )
            changes = _apply_amendment(request, amendment)

        request.status = requested_status
        entry = audit_log.append(
            request.id, current, requested_status, actor.actor_id, actor.actor_type,
            remark=remark, changes=changes,
        )
        applied.append((request, entry))

        if request.kind == "move-out" and requested_status == "approved":
            closed = _close_linked_move_in(request)
            if closed is not None:
                applied.append(closed)

        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        logger.warning("Concurrent update on request %s", request_id, extra={"request_id": request_id})
        raise ConcurrentModificationError(request_id, expected_version)
    except Exception:
        db.session.rollback()
        raise

    for req, entry in applied:
        logger.info(
            "Request %s: %s → %s by %s", req.request_no, entry.from_status, entry.to_status,
            entry.actor_type,
            extra={
                "request_id": req.id,
                "request_no": req.request_no,
                "from_status": entry.from_status,
                "to_status": entry.to_status,
                "actor_type": entry.actor_type,
            },
        )

    dispatch([TransitionEvent.from_request(req, entry) for req, entry in applied])
    return request


# ═════════════════════════════════════════════════════════════════════════════
# Read side
# ═════════════════════════════════════════════════════════════════════════════


def history(request_id: int):
    get_request(request_id)
    return audit_log.history(request_id)


def resolve_recipients(
    category: str,
    scope: dict,
    kind: str,
    *,
    requester_email: str | None = None,
    unit_id: int | None = None,
):
    """Preview resolution; raises RecipientResolutionError when nothing is configured."""
    return recipient_resolver.resolve(
        category, scope, kind, requester_email=requester_email, unit_id=unit_id,
    )
