"""
Status model tests — pure functions over STATUS_TRANSITIONS.

    new            → rfi-pending | approved | cancelled | user-cancelled
    rfi-pending    → rfi-submitted | user-cancelled
    rfi-submitted  → approved | rfi-pending | cancelled
    approved       → closed
    user-cancelled, cancelled, closed: terminal

Every valid (status, target, actor) triple is accepted; every other
combination of known statuses and actors is refused.
"""

import itertools

import pytest

from occupancy.core.exceptions import InvalidTransitionError
from occupancy.models.transition import ACTOR_TYPES, STATUS_TRANSITIONS, STATUSES
from occupancy.services.status_model import (
    allowed_transitions,
    can_transition,
    check_transition,
    explain_rejection,
    is_terminal,
)

VALID = {
    ("new", "rfi-pending", "community-admin"),
    ("new", "rfi-pending", "super-admin"),
    ("new", "approved", "community-admin"),
    ("new", "approved", "super-admin"),
    ("new", "approved", "system"),
    ("new", "cancelled", "community-admin"),
    ("new", "cancelled", "super-admin"),
    ("new", "user-cancelled", "user"),
    ("rfi-pending", "rfi-submitted", "user"),
    ("rfi-pending", "user-cancelled", "user"),
    ("rfi-submitted", "approved", "community-admin"),
    ("rfi-submitted", "approved", "super-admin"),
    ("rfi-submitted", "rfi-pending", "community-admin"),
    ("rfi-submitted", "rfi-pending", "super-admin"),
    ("rfi-submitted", "cancelled", "community-admin"),
    ("rfi-submitted", "cancelled", "super-admin"),
    ("approved", "closed", "community-admin"),
    ("approved", "closed", "super-admin"),
    ("approved", "closed", "system"),
    ("approved", "closed", "security"),
}

INVALID = sorted(
    set(itertools.product(STATUSES, STATUSES, sorted(ACTOR_TYPES))) - VALID
)


class TestTransitionTable:
    def test_table_matches_documented_edges(self):
        table_edges = {
            (current, target, actor)
            for current, targets in STATUS_TRANSITIONS.items()
            for target, actors in targets.items()
            for actor in actors
        }
        assert table_edges == VALID

    def test_every_status_has_an_entry(self):
        assert set(STATUS_TRANSITIONS) == set(STATUSES)

    @pytest.mark.parametrize("current,target,actor", sorted(VALID))
    def test_valid_edge_allowed(self, current, target, actor):
        assert can_transition(current, target, actor) is True
        assert explain_rejection(current, target, actor) is None
        check_transition(current, target, actor)

    @pytest.mark.parametrize("current,target,actor", INVALID)
    def test_invalid_edge_refused(self, current, target, actor):
        assert can_transition(current, target, actor) is False
        assert explain_rejection(current, target, actor) is not None


class TestTerminal:
    @pytest.mark.parametrize("status", ["user-cancelled", "cancelled", "closed"])
    def test_terminal_statuses(self, status):
        assert is_terminal(status)
        for actor in ACTOR_TYPES:
            assert allowed_transitions(status, actor) == []

    @pytest.mark.parametrize("status", ["new", "rfi-pending", "rfi-submitted", "approved"])
    def test_non_terminal_statuses(self, status):
        assert not is_terminal(status)

    def test_terminal_reason(self):
        assert "terminal" in explain_rejection("closed", "approved", "super-admin")


class TestAllowedTransitions:
    def test_reviewer_from_new(self):
        assert allowed_transitions("new", "community-admin") == ["rfi-pending", "approved", "cancelled"]

    def test_user_from_new(self):
        assert allowed_transitions("new", "user") == ["user-cancelled"]

    def test_system_from_new(self):
        assert allowed_transitions("new", "system") == ["approved"]

    def test_security_only_closes(self):
        assert allowed_transitions("approved", "security") == ["closed"]
        assert allowed_transitions("new", "security") == []


class TestRejectionReasons:
    def test_self_transition(self):
        assert explain_rejection("new", "new", "super-admin") == "request is already in this status"

    def test_unknown_requested_status(self):
        assert "unknown status" in explain_rejection("new", "archived", "super-admin")

    def test_unknown_current_status(self):
        assert "unknown current status" in explain_rejection("open", "approved", "super-admin")

    def test_unknown_actor(self):
        assert "unknown actor" in explain_rejection("new", "approved", "janitor")

    def test_unreachable(self):
        assert "not reachable" in explain_rejection("new", "closed", "super-admin")

    def test_actor_not_allowed(self):
        assert "may not" in explain_rejection("new", "approved", "user")


class TestCheckTransition:
    def test_raises_with_context(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            check_transition("approved", "rfi-pending", "community-admin", request_ref="MIN-A-101-1")
        err = exc_info.value
        assert err.current_status == "approved"
        assert err.requested_status == "rfi-pending"
        assert err.actor_type == "community-admin"
        assert "MIN-A-101-1" in str(err)
