"""
Transition lifecycle tests — submit, transition, amendments, linked requests.

Covers:
    1. Submission: request numbers, initial log entry, validation, auto-approval
    2. Transitions: version bump, audit entry, refused moves leave no trace
    3. RFI amendments: diff recorded, re-validation, only with rfi-submitted
    4. Concurrency: stale expected_version, row-lock SQL, two sessions racing
    5. Move-out: single open move-out, approval closes the linked move-in
    6. Renewal: needs an approved move-in, one approved renewal, no move-out
    7. Notifications: failures never undo a committed transition
"""

import threading
from datetime import date, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql

from occupancy.core.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from occupancy.models import db
from occupancy.models.audit import TransitionLogEntry
from occupancy.models.dispatch import NotificationDispatch
from occupancy.models.notification import OperatorNotification
from occupancy.models.transition import TenantDetail, TransitionRequest
from occupancy.models.unit import Unit
from occupancy.services import audit_log
from occupancy.services.status_model import Actor
from occupancy.services.transition_lifecycle import (
    get_request,
    history,
    lock_statement,
    resolve_recipients,
    submit,
    transition,
)

ADMIN = Actor(actor_id=900, actor_type="community-admin")
SUPER = Actor(actor_id=901, actor_type="super-admin")
REQUESTER = Actor(actor_id=7, actor_type="user")
SECURITY = Actor(actor_id=950, actor_type="security")

FUTURE = (date.today() + timedelta(days=365)).isoformat()


def _tenant_detail(**overrides):
    data = {
        "adults": 2,
        "first_name": "Layla",
        "last_name": "Haddad",
        "email": "layla@example.com",
        "emirates_id_number": "784-1990-1234567-1",
        "emirates_id_expiry_date": FUTURE,
        "tenancy_contract_start_date": date.today().isoformat(),
        "tenancy_contract_end_date": FUTURE,
    }
    data.update(overrides)
    return data


def _submit_tenant(unit, kind="move-in", **kwargs):
    kwargs.setdefault("user_id", REQUESTER.actor_id)
    kwargs.setdefault("requester_email", "layla@example.com")
    detail = kwargs.pop("detail", None) or _tenant_detail()
    return submit("tenant", detail, kind=kind, unit_id=unit.id, **kwargs)


def _submit_owner(unit, kind="move-in", **kwargs):
    kwargs.setdefault("user_id", 3)
    kwargs.setdefault("requester_email", "owner@example.com")
    return submit("owner", {"adults": 2}, kind=kind, unit_id=unit.id, **kwargs)


def _count(model) -> int:
    return db.session.execute(select(func.count()).select_from(model)).scalar_one()


# ═════════════════════════════════════════════════════════════════════════════
# 1. Submission
# ═════════════════════════════════════════════════════════════════════════════


class TestSubmit:
    def test_tenant_move_in_starts_new(self, unit, transport):
        req = _submit_tenant(unit, comments="Moving on the 1st")

        assert req.status == "new"
        assert req.auto_approved is False
        assert req.request_no == f"MIN-A-101-{req.id}"
        assert req.scope == {"master_community_id": 1, "community_id": 10, "tower_id": None}
        assert isinstance(req.detail, TenantDetail)
        assert req.detail.first_name == "Layla"

        entries = history(req.id)
        assert len(entries) == 1
        assert entries[0].from_status is None
        assert entries[0].to_status == "new"
        assert entries[0].actor_type == "user"
        assert entries[0].actor_id == REQUESTER.actor_id
        assert entries[0].remark == "Moving on the 1st"

        # submission that stays in "new" is not announced
        assert transport.sent == []

    def test_owner_move_in_auto_approved(self, unit, recipients, transport):
        req = _submit_owner(unit)

        assert req.status == "approved"
        assert req.auto_approved is True
        entries = history(req.id)
        assert len(entries) == 1
        assert (entries[0].from_status, entries[0].to_status) == ("new", "approved")
        assert entries[0].actor_type == "system"
        assert entries[0].actor_id is None
        assert entries[0].remark == "Auto-approved on submission"

        assert len(transport.sent) == 1
        sent = transport.sent[0]
        assert sent["primary"] == ["owner@example.com"]
        assert sent["cc"] == ["community.mip@example.com", "security@example.com"]
        assert sent["artifact"].template_type == "move-in"
        assert req.request_no in sent["artifact"].subject

    def test_manual_review_blocks_auto_approval(self, unit):
        req = _submit_owner(unit, manual_review=True)
        assert req.status == "new"
        assert req.manual_review is True

    def test_validation_failure_writes_nothing(self, unit):
        with pytest.raises(ValidationError) as exc_info:
            _submit_tenant(unit, detail={"adults": 1})
        assert "first_name" in exc_info.value.details
        assert _count(TransitionRequest) == 0
        assert _count(TransitionLogEntry) == 0

    def test_unknown_unit(self):
        with pytest.raises(NotFoundError):
            submit("owner", {"adults": 1}, kind="move-in", unit_id=999, user_id=1,
                   requester_email="owner@example.com")

    def test_inactive_unit(self, unit_factory):
        inactive = unit_factory(unit_number="Z-1", is_active=False)
        with pytest.raises(ValidationError) as exc_info:
            _submit_owner(inactive)
        assert exc_info.value.details == {"unit_id": "inactive"}

    def test_invalid_requester_email(self, unit):
        with pytest.raises(ValidationError) as exc_info:
            _submit_owner(unit, requester_email="not an email")
        assert exc_info.value.details == {"requester_email": "invalid"}

    def test_invalid_move_date(self, unit):
        with pytest.raises(ValidationError) as exc_info:
            _submit_owner(unit, move_date="31/31/2030")
        assert "move_date" in exc_info.value.details

    def test_move_date_stored(self, unit):
        req = _submit_owner(unit, move_date="2030-03-15", manual_review=True)
        assert req.move_date == date(2030, 3, 15)

    def test_tower_scope_taken_from_unit(self, tower_unit):
        req = _submit_tenant(tower_unit)
        assert req.tower_id == 100
        assert req.request_no == f"MIN-T-1204-{req.id}"

    def test_get_request_not_found(self):
        with pytest.raises(NotFoundError):
            get_request(12345)


# ═════════════════════════════════════════════════════════════════════════════
# 2. Transitions
# ═════════════════════════════════════════════════════════════════════════════


class TestTransition:
    def test_rfi_round_trip_to_approval(self, unit, recipients, transport):
        req = _submit_tenant(unit)
        version = req.version

        transition(req.id, "rfi-pending", ADMIN, remark="Upload Emirates ID")
        transition(req.id, "rfi-submitted", REQUESTER)
        req = transition(req.id, "approved", SUPER, remark="All good")

        assert req.status == "approved"
        assert req.version == version + 3
        entries = history(req.id)
        assert [(e.from_status, e.to_status) for e in entries] == [
            (None, "new"),
            ("new", "rfi-pending"),
            ("rfi-pending", "rfi-submitted"),
            ("rfi-submitted", "approved"),
        ]
        assert entries[1].remark == "Upload Emirates ID"
        assert entries[3].actor_type == "super-admin"

        assert len(transport.sent) == 3
        # tenant requests copy the unit owner
        assert transport.sent[-1]["cc"][-1] == "owner@example.com"

    def test_refused_transition_changes_nothing(self, unit, transport):
        req = _submit_tenant(unit)
        version = req.version

        with pytest.raises(InvalidTransitionError) as exc_info:
            transition(req.id, "approved", REQUESTER)
        assert exc_info.value.current_status == "new"

        req = get_request(req.id)
        assert req.status == "new"
        assert req.version == version
        assert len(history(req.id)) == 1
        assert transport.sent == []

    def test_unreachable_target(self, unit):
        req = _submit_tenant(unit)
        with pytest.raises(InvalidTransitionError):
            transition(req.id, "closed", ADMIN)

    def test_terminal_is_final(self, unit):
        req = _submit_tenant(unit)
        transition(req.id, "user-cancelled", REQUESTER, remark="Changed plans")

        for status, actor in [("new", ADMIN), ("approved", SUPER), ("rfi-pending", ADMIN)]:
            with pytest.raises(InvalidTransitionError):
                transition(req.id, status, actor)
        assert get_request(req.id).status == "user-cancelled"

    def test_security_closes_approved(self, unit):
        req = _submit_owner(unit)
        req = transition(req.id, "closed", SECURITY)
        assert req.status == "closed"
        assert req.is_terminal

    def test_unknown_request(self):
        with pytest.raises(NotFoundError):
            transition(4040, "approved", ADMIN)


# ═════════════════════════════════════════════════════════════════════════════
# 3. RFI amendments
# ═════════════════════════════════════════════════════════════════════════════


class TestAmendment:
    def _pending(self, unit):
        req = _submit_tenant(unit)
        transition(req.id, "rfi-pending", ADMIN, remark="Wrong last name")
        return req

    def test_amendment_recorded(self, unit):
        req = self._pending(unit)
        req = transition(req.id, "rfi-submitted", REQUESTER, amendment={"last_name": "Haddad-Saleh"})

        assert req.detail.last_name == "Haddad-Saleh"
        entry = history(req.id)[-1]
        assert entry.changes == {"last_name": {"old": "Haddad", "new": "Haddad-Saleh"}}

    def test_invalid_amendment_rolls_back(self, unit):
        req = self._pending(unit)
        with pytest.raises(ValidationError):
            transition(req.id, "rfi-submitted", REQUESTER, amendment={"email": "broken"})

        req = get_request(req.id)
        assert req.status == "rfi-pending"
        assert req.detail.email == "layla@example.com"
        assert len(history(req.id)) == 2

    def test_amendment_only_with_rfi_submitted(self, unit):
        req = _submit_tenant(unit)
        with pytest.raises(ValidationError) as exc_info:
            transition(req.id, "rfi-pending", ADMIN, amendment={"adults": 3})
        assert "amendment" in exc_info.value.details
        assert get_request(req.id).status == "new"


# ═════════════════════════════════════════════════════════════════════════════
# 4. Concurrency
# ═════════════════════════════════════════════════════════════════════════════


class TestConcurrency:
    def test_stale_expected_version(self, unit):
        req = _submit_tenant(unit)
        stale = req.version
        transition(req.id, "rfi-pending", ADMIN, expected_version=stale)

        with pytest.raises(ConcurrentModificationError) as exc_info:
            transition(req.id, "cancelled", ADMIN, expected_version=stale)
        assert exc_info.value.expected_version == stale
        assert exc_info.value.actual_version == stale + 1
        assert get_request(req.id).status == "rfi-pending"
        assert len(history(req.id)) == 2

    def test_row_lock_targets_request_table_only(self):
        sql = str(lock_statement(1).compile(dialect=postgresql.dialect()))
        assert "FOR UPDATE OF transition_requests" in sql
        assert "JOIN" not in sql

    def test_racing_writers_one_wins(self, file_app, monkeypatch):
        """Two sessions read the same version; the slower commit is refused."""
        with file_app.app_context():
            owned = Unit(unit_number="R-1", master_community_id=1, community_id=10,
                         owner_email="owner@example.com", is_active=True)
            db.session.add(owned)
            db.session.commit()
            req = submit("owner", {"adults": 1}, kind="move-in", unit_id=owned.id, user_id=3,
                         requester_email="owner@example.com", manual_review=True)
            request_id, start_version = req.id, req.version

            rival = {}
            real_append = audit_log.append

            def _rival_transition():
                with file_app.app_context():
                    try:
                        rival["status"] = transition(request_id, "cancelled", ADMIN).status
                    except Exception as exc:
                        rival["error"] = exc

            def _append_after_rival_commits(*args, **kwargs):
                # First writer has read version N; let a second session commit N+1
                if "started" not in rival:
                    rival["started"] = True
                    thread = threading.Thread(target=_rival_transition)
                    thread.start()
                    thread.join(timeout=30)
                return real_append(*args, **kwargs)

            monkeypatch.setattr(audit_log, "append", _append_after_rival_commits)
            with pytest.raises(ConcurrentModificationError):
                transition(request_id, "rfi-pending", ADMIN)

            assert rival == {"started": True, "status": "cancelled"}
            db.session.expire_all()
            stored = db.session.get(TransitionRequest, request_id)
            assert stored.status == "cancelled"
            assert stored.version == start_version + 1
            assert [e.to_status for e in history(request_id)] == ["new", "cancelled"]


# ═════════════════════════════════════════════════════════════════════════════
# 5. Move-out
# ═════════════════════════════════════════════════════════════════════════════


class TestMoveOut:
    def test_links_to_approved_move_in(self, unit):
        move_in = _submit_owner(unit)
        move_out = _submit_owner(unit, kind="move-out")

        assert move_out.status == "new"
        assert move_out.linked_request_id == move_in.id
        assert move_out.request_no == f"MOUT-A-101-{move_out.id}"

    def test_one_open_move_out_per_unit(self, unit):
        _submit_owner(unit, kind="move-out")
        with pytest.raises(ValidationError) as exc_info:
            _submit_owner(unit, kind="move-out")
        assert exc_info.value.details == {"unit_id": "open move-out exists"}

    def test_cancelled_move_out_allows_new_one(self, unit):
        first = _submit_owner(unit, kind="move-out")
        transition(first.id, "cancelled", ADMIN)
        second = _submit_owner(unit, kind="move-out")
        assert second.id != first.id

    def test_explicit_link_must_be_move_in(self, unit):
        other = _submit_owner(unit, kind="move-out")
        transition(other.id, "cancelled", ADMIN)
        with pytest.raises(ValidationError):
            _submit_owner(unit, kind="move-out", linked_request_id=other.id)

    def test_approval_closes_move_in(self, unit, recipients, transport):
        move_in = _submit_owner(unit)
        move_out = _submit_owner(unit, kind="move-out")
        sent_before = len(transport.sent)

        move_out = transition(move_out.id, "approved", ADMIN)

        assert move_out.status == "approved"
        move_in = get_request(move_in.id)
        assert move_in.status == "closed"
        closing = history(move_in.id)[-1]
        assert (closing.from_status, closing.to_status) == ("approved", "closed")
        assert closing.actor_type == "system"
        assert closing.remark == f"Closed by move-out {move_out.request_no}"

        templates = [s["artifact"].template_type for s in transport.sent[sent_before:]]
        assert templates == ["move-out", "move-in"]
        assert transport.sent[sent_before]["cc"] == ["community.mop@example.com"]


# ═════════════════════════════════════════════════════════════════════════════
# 6. Renewal
# ═════════════════════════════════════════════════════════════════════════════


class TestRenewal:
    def _approved_tenant_move_in(self, unit):
        req = _submit_tenant(unit)
        return transition(req.id, "approved", ADMIN)

    def test_renewal_auto_approved(self, unit):
        move_in = self._approved_tenant_move_in(unit)
        renewal = _submit_tenant(unit, kind="renewal", linked_request_id=move_in.id)

        assert renewal.status == "approved"
        assert renewal.auto_approved is True
        assert renewal.request_no == f"ARR-{renewal.id:06d}"

    def test_renewal_requires_link(self, unit):
        with pytest.raises(ValidationError) as exc_info:
            _submit_tenant(unit, kind="renewal")
        assert exc_info.value.details == {"linked_request_id": "required"}

    def test_renewal_requires_approved_move_in(self, unit):
        pending = _submit_tenant(unit)
        with pytest.raises(ValidationError):
            _submit_tenant(unit, kind="renewal", linked_request_id=pending.id)

    def test_second_approved_renewal_refused(self, unit):
        move_in = self._approved_tenant_move_in(unit)
        _submit_tenant(unit, kind="renewal", linked_request_id=move_in.id)
        with pytest.raises(ValidationError) as exc_info:
            _submit_tenant(unit, kind="renewal", linked_request_id=move_in.id)
        assert exc_info.value.details == {"unit_id": "renewal already approved"}

    def test_renewal_blocked_by_move_out(self, unit):
        move_in = self._approved_tenant_move_in(unit)
        _submit_tenant(unit, kind="move-out")
        with pytest.raises(ValidationError) as exc_info:
            _submit_tenant(unit, kind="renewal", linked_request_id=move_in.id)
        assert exc_info.value.details == {"unit_id": "move-out in progress"}

    def test_owner_cannot_renew(self, unit):
        move_in = _submit_owner(unit)
        with pytest.raises(ValidationError):
            _submit_owner(unit, kind="renewal", linked_request_id=move_in.id)


# ═════════════════════════════════════════════════════════════════════════════
# 7. Notification failures
# ═════════════════════════════════════════════════════════════════════════════


class TestNotificationFailure:
    def test_transport_failure_keeps_transition(self, unit, recipients, transport):
        req = _submit_tenant(unit)
        transport.fail_with = TransportError("SMTP relay down")

        req = transition(req.id, "rfi-pending", ADMIN)

        assert req.status == "rfi-pending"
        dispatch = db.session.execute(select(NotificationDispatch)).scalar_one()
        assert dispatch.status == "failed"
        assert dispatch.warning == "TransportError"
        assert "SMTP relay down" in dispatch.error_message
        alert = db.session.execute(select(OperatorNotification)).scalar_one()
        assert alert.category == "transport"
        assert alert.severity == "error"

    def test_missing_configuration_still_mails_requester(self, unit, transport):
        req = _submit_tenant(unit)
        transition(req.id, "rfi-pending", ADMIN)

        assert transport.sent[0]["primary"] == ["layla@example.com"]
        assert transport.sent[0]["cc"] == ["owner@example.com"]
        dispatch = db.session.execute(select(NotificationDispatch)).scalar_one()
        assert dispatch.status == "sent"
        assert dispatch.warning == "RecipientResolutionWarning"
        alert = db.session.execute(select(OperatorNotification)).scalar_one()
        assert alert.category == "recipients"


class TestAddressee:
    def test_hho_company_mail_goes_to_company(self, unit, recipients, transport):
        req = submit(
            "hho-company",
            {
                "company": "Palm Stays LLC",
                "company_email": "ops@palmstays.example.com",
                "trade_license_number": "TL-9981",
                "unit_permit_number": "UP-5512",
            },
            kind="move-in", unit_id=unit.id, user_id=12, requester_email="agent@example.com",
        )
        assert req.status == "new"
        assert req.to_dict()["primary_email"] == "ops@palmstays.example.com"

        transition(req.id, "approved", ADMIN)

        sent = transport.sent[-1]
        assert sent["primary"] == ["ops@palmstays.example.com"]
        assert sent["cc"] == ["community.mip@example.com", "security@example.com", "owner@example.com"]
        assert "agent@example.com" not in sent["primary"] + sent["cc"]

    def test_tenant_detail_email_preferred_over_account(self, unit, recipients, transport):
        req = _submit_tenant(unit, requester_email="family.account@example.com")
        transition(req.id, "rfi-pending", ADMIN)
        assert transport.sent[-1]["primary"] == ["layla@example.com"]

    def test_owner_uses_account_email(self, unit):
        req = _submit_owner(unit, manual_review=True)
        assert req.primary_email == "owner@example.com"


# ═════════════════════════════════════════════════════════════════════════════
# Recipient preview
# ═════════════════════════════════════════════════════════════════════════════


class TestResolvePreview:
    def test_preview_move_out(self, unit, recipients):
        resolution = resolve_recipients(
            "tenant", unit.scope, "move-out",
            requester_email="layla@example.com", unit_id=unit.id,
        )
        assert resolution.primary == ["layla@example.com"]
        assert resolution.cc == ["community.mop@example.com", "owner@example.com"]
        assert resolution.scope_level == "community"
