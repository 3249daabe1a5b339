"""
Recipient resolver tests — scope fallback, list selection, owner CC, de-duplication.
"""

import pytest

from occupancy.core.exceptions import RecipientResolutionError, ValidationError
from occupancy.services.collaborators import OwnershipLookup
from occupancy.services.recipient_config import (
    create_recipient_configuration,
    update_recipient_configuration,
)
from occupancy.services.recipient_resolver import dedupe, direct_recipients, resolve
from occupancy.services.scope_resolution import normalize_scope

VILLA = {"master_community_id": 1, "community_id": 10}
TOWER = {"master_community_id": 1, "community_id": 10, "tower_id": 100}


class FixedOwner(OwnershipLookup):
    def __init__(self, email):
        self.email = email
        self.calls = []

    def owner_email(self, unit_id):
        self.calls.append(unit_id)
        return self.email


# ── Scope fallback ───────────────────────────────────────────────────────────


class TestScopeFallback:
    def test_tower_config_wins(self, recipients):
        create_recipient_configuration(TOWER, mip=["tower.mip@example.com"])
        res = resolve("owner", TOWER, "move-in", requester_email="owner@example.com")
        assert res.scope_level == "tower"
        assert res.cc == ["tower.mip@example.com"]

    def test_tower_falls_back_to_community(self, recipients):
        res = resolve("owner", TOWER, "move-in", requester_email="owner@example.com")
        assert res.scope_level == "community"
        assert res.configuration_id == recipients["community"].id

    def test_community_falls_back_to_master(self):
        master = create_recipient_configuration({"master_community_id": 1}, mip=["m@example.com"])
        res = resolve("owner", VILLA, "move-in", requester_email="owner@example.com")
        assert res.scope_level == "master-community"
        assert res.configuration_id == master.id
        assert res.cc == ["m@example.com"]

    def test_empty_list_falls_through(self, recipients):
        # tower config exists but has no MOP list
        create_recipient_configuration(TOWER, mip=["tower.mip@example.com"], mop=[])
        res = resolve("owner", TOWER, "move-out", requester_email="owner@example.com")
        assert res.scope_level == "community"
        assert res.cc == ["community.mop@example.com"]

    def test_all_lists_empty_uses_narrowest(self):
        create_recipient_configuration({"master_community_id": 1}, mip=[], mop=[])
        tower = create_recipient_configuration(TOWER, mip=[], mop=[])
        res = resolve("owner", TOWER, "move-in", requester_email="owner@example.com")
        assert res.configuration_id == tower.id
        assert res.primary == ["owner@example.com"]
        assert res.cc == []

    def test_inactive_configuration_ignored(self, recipients):
        update_recipient_configuration(recipients["community"].id, is_active=False)
        res = resolve("owner", VILLA, "move-in", requester_email="owner@example.com")
        assert res.scope_level == "master-community"

    def test_nothing_configured(self):
        with pytest.raises(RecipientResolutionError) as exc_info:
            resolve("owner", VILLA, "move-in", requester_email="owner@example.com")
        assert exc_info.value.code == "no-recipients-configured"

    def test_other_master_community_not_used(self, recipients):
        with pytest.raises(RecipientResolutionError):
            resolve("owner", {"master_community_id": 2, "community_id": 10}, "move-in")


# ── List selection & CC ──────────────────────────────────────────────────────


class TestLists:
    @pytest.mark.parametrize("kind,expected", [
        ("move-in", ["community.mip@example.com", "security@example.com"]),
        ("renewal", ["community.mip@example.com", "security@example.com"]),
        ("move-out", ["community.mop@example.com"]),
    ])
    def test_list_by_kind(self, recipients, kind, expected):
        res = resolve("owner", VILLA, kind, requester_email="owner@example.com", unit_id=1)
        assert res.cc == expected

    @pytest.mark.parametrize("category", ["tenant", "hho-company", "hho-owner"])
    def test_owner_copied_for_non_owner_categories(self, recipients, category):
        owner = FixedOwner("landlord@example.com")
        res = resolve(category, VILLA, "move-in", requester_email="occupant@example.com",
                      unit_id=5, ownership=owner)
        assert res.primary == ["occupant@example.com"]
        assert res.cc[-1] == "landlord@example.com"
        assert owner.calls == [5]

    def test_owner_category_not_copied(self, recipients):
        owner = FixedOwner("landlord@example.com")
        res = resolve("owner", VILLA, "move-in", requester_email="owner@example.com",
                      unit_id=5, ownership=owner)
        assert "landlord@example.com" not in res.cc
        assert owner.calls == []

    def test_unknown_owner_skipped(self, recipients):
        res = resolve("tenant", VILLA, "move-in", requester_email="occupant@example.com",
                      unit_id=5, ownership=FixedOwner(None))
        assert res.cc == ["community.mip@example.com", "security@example.com"]

    def test_default_ownership_reads_unit(self, unit, recipients):
        res = resolve("tenant", VILLA, "move-in", requester_email="occupant@example.com", unit_id=unit.id)
        assert res.cc[-1] == "owner@example.com"

    def test_history_snapshot_referenced(self, recipients):
        res = resolve("owner", VILLA, "move-in", requester_email="owner@example.com")
        assert res.history_id is not None


# ── De-duplication ───────────────────────────────────────────────────────────


class TestDedupe:
    def test_primary_wins_case_insensitively(self):
        primary, cc = dedupe(["Owner@Example.com"], ["owner@example.com", "a@example.com", "A@example.com"])
        assert primary == ["Owner@Example.com"]
        assert cc == ["a@example.com"]

    def test_requester_in_configured_list(self, recipients):
        res = resolve("owner", VILLA, "move-in", requester_email="SECURITY@example.com")
        assert res.primary == ["SECURITY@example.com"]
        assert res.cc == ["community.mip@example.com"]

    def test_direct_recipients(self):
        res = direct_recipients("tenant", requester_email="t@example.com", unit_id=9,
                                ownership=FixedOwner("T@example.com"))
        assert res.primary == ["t@example.com"]
        assert res.cc == []


# ── Input checks ─────────────────────────────────────────────────────────────


class TestInputs:
    def test_unknown_category(self, recipients):
        with pytest.raises(ValidationError):
            resolve("landlord", VILLA, "move-in")

    def test_unknown_kind(self, recipients):
        with pytest.raises(ValidationError):
            resolve("owner", VILLA, "sublet")

    def test_scope_needs_master(self):
        with pytest.raises(ValidationError):
            normalize_scope({"community_id": 10})

    def test_tower_needs_community(self):
        with pytest.raises(ValidationError):
            normalize_scope({"master_community_id": 1, "tower_id": 100})

    def test_scope_ids_coerced(self):
        assert normalize_scope({"master_community_id": "1", "community_id": "10", "tower_id": ""}) == {
            "master_community_id": 1, "community_id": 10, "tower_id": None,
        }
