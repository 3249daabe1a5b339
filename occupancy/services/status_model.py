"""
Transition request status model.

Pure functions over the STATUS_TRANSITIONS table in
``occupancy.models.transition``; no database access.

    new            → rfi-pending | approved | cancelled | user-cancelled
    rfi-pending    → rfi-submitted | user-cancelled
    rfi-submitted  → approved | rfi-pending | cancelled
    approved       → closed
    user-cancelled, cancelled, closed: terminal

Usage:
    from occupancy.services.status_model import Actor, check_transition

    check_transition("new", "approved", "community-admin")
"""

from dataclasses import dataclass

from occupancy.core.exceptions import InvalidTransitionError
from occupancy.models.transition import (
    ACTOR_TYPES,
    STATUS_TRANSITIONS,
    STATUSES,
    TERMINAL_STATUSES,
)


@dataclass(frozen=True)
class Actor:
    """Who is asking for a transition. ``actor_id`` is None for the system."""

    actor_id: int | None
    actor_type: str


SYSTEM_ACTOR = Actor(actor_id=None, actor_type="system")


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: str, requested: str, actor_role: str) -> bool:
    """Return True if ``actor_role`` may move a request from current to requested."""
    if current == requested:
        return False
    allowed = STATUS_TRANSITIONS.get(current, {}).get(requested)
    return bool(allowed) and actor_role in allowed


def allowed_transitions(current: str, actor_role: str) -> list[str]:
    """Statuses reachable from ``current`` for this actor, in declaration order."""
    return [
        target
        for target, actors in STATUS_TRANSITIONS.get(current, {}).items()
        if actor_role in actors
    ]


def explain_rejection(current: str, requested: str, actor_role: str) -> str | None:
    """Human-readable reason a transition is refused, or None if it is allowed."""
    if current not in STATUSES:
        return f"unknown current status '{current}'"
    if requested not in STATUSES:
        return f"unknown status '{requested}'"
    if actor_role not in ACTOR_TYPES:
        return f"unknown actor type '{actor_role}'"
    if current == requested:
        return "request is already in this status"
    if current in TERMINAL_STATUSES:
        return f"'{current}' is terminal"
    actors = STATUS_TRANSITIONS[current].get(requested)
    if actors is None:
        return f"'{requested}' is not reachable from '{current}'"
    if actor_role not in actors:
        return f"actor type '{actor_role}' may not perform this transition"
    return None


def check_transition(current: str, requested: str, actor_role: str, request_ref=None) -> None:
    """Raise InvalidTransitionError unless the transition is allowed."""
    reason = explain_rejection(current, requested, actor_role)
    if reason is not None:
        raise InvalidTransitionError(request_ref, current, requested, actor_role, reason)
