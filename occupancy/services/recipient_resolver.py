"""
Recipient resolver — who gets the email for a transition.

Algorithm:
    1. Narrowest active configuration with a non-empty list for the kind wins
       (tower → community → master-community).
    2. MIP list for move-in and renewal, MOP list for move-out. That list is
       the base CC set.
    3. Primary is the requester's own address: the company email for
       hho-company, the occupant email for tenant / hho-owner, the account email
       for owners (TransitionRequest.primary_email). For tenant / hho-company /
       hho-owner the unit owner's email (ownership lookup) is added to CC; for
       owner requests the requester *is* the owner, so nothing is added.
    4. Case-insensitive de-duplication, order kept; an address in primary is
       dropped from CC.

No active configuration at any level raises RecipientResolutionError. The
dispatcher downgrades that to a warning and still mails the primary
addressee (see direct_recipients()).
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import select

from occupancy.core.exceptions import RecipientResolutionError, ValidationError
from occupancy.models import db
from occupancy.models.recipients import RecipientConfiguration
from occupancy.models.transition import REQUEST_CATEGORIES
from occupancy.services.collaborators import OwnershipLookup, get_collaborators
from occupancy.services.recipient_config import latest_recipient_snapshot_id
from occupancy.services.scope_resolution import normalize_scope, scope_candidates

logger = logging.getLogger(__name__)

# Categories where the occupant is not the owner
_OWNER_IN_CC = frozenset({"tenant", "hho-company", "hho-owner"})


@dataclass(frozen=True)
class Resolution:
    primary: list = field(default_factory=list)
    cc: list = field(default_factory=list)
    configuration_id: int | None = None
    history_id: int | None = None
    scope_level: str | None = None

    def to_dict(self) -> dict:
        return {
            "primary": list(self.primary),
            "cc": list(self.cc),
            "configuration_id": self.configuration_id,
            "history_id": self.history_id,
            "scope_level": self.scope_level,
        }


def list_for_kind(config: RecipientConfiguration, kind: str) -> list[str]:
    if kind == "move-out":
        return config.mop_list
    return config.mip_list


def dedupe(primary, cc) -> tuple[list[str], list[str]]:
    """Drop blanks and case-insensitive repeats; primary wins over CC."""
    seen: set[str] = set()
    clean_primary: list[str] = []
    for email in primary:
        if email and email.casefold() not in seen:
            seen.add(email.casefold())
            clean_primary.append(email)
    clean_cc: list[str] = []
    for email in cc:
        if email and email.casefold() not in seen:
            seen.add(email.casefold())
            clean_cc.append(email)
    return clean_primary, clean_cc


def _check_inputs(category: str, kind: str) -> None:
    if category not in REQUEST_CATEGORIES:
        raise ValidationError(f"Unknown requester category '{category}'", details={"category": "unknown"})
    if kind not in ("move-in", "move-out", "renewal"):
        raise ValidationError(f"Unknown transition kind '{kind}'", details={"kind": "unknown"})


def _owner_cc(category: str, unit_id, ownership: OwnershipLookup | None) -> list[str]:
    if category not in _OWNER_IN_CC or unit_id is None:
        return []
    ownership = ownership or get_collaborators().ownership
    owner_email = ownership.owner_email(unit_id)
    return [owner_email] if owner_email else []


def find_configuration(scope: dict, kind: str) -> tuple[RecipientConfiguration | None, str | None, bool]:
    """
    Walk the scope levels narrowest first.

    Returns ``(config, level, any_found)``: the first configuration with a
    non-empty list for ``kind``; if none has one, the narrowest active
    configuration (with its empty list); ``any_found`` is False when no
    level has an active configuration at all.
    """
    fallback = None
    for level, filters in scope_candidates(scope):
        stmt = (
            select(RecipientConfiguration)
            .where(RecipientConfiguration.is_active.is_(True), *filters(RecipientConfiguration))
            .order_by(RecipientConfiguration.id.desc())
        )
        config = db.session.execute(stmt).scalars().first()
        if config is None:
            continue
        if list_for_kind(config, kind):
            return config, level, True
        if fallback is None:
            fallback = (config, level)
    if fallback is not None:
        return fallback[0], fallback[1], True
    return None, None, False


def direct_recipients(category: str, *, requester_email, unit_id=None, ownership=None) -> Resolution:
    """Requester plus (for non-owner categories) the unit owner, no configuration."""
    primary, cc = dedupe([requester_email], _owner_cc(category, unit_id, ownership))
    return Resolution(primary=primary, cc=cc)


def resolve(
    category: str,
    scope: dict,
    kind: str,
    *,
    requester_email: str | None = None,
    unit_id: int | None = None,
    ownership: OwnershipLookup | None = None,
) -> Resolution:
    """Compute primary and CC addresses for a transition notification."""
    _check_inputs(category, kind)
    scope = normalize_scope(scope)

    config, level, found = find_configuration(scope, kind)
    if not found:
        logger.warning("No recipient configuration for scope %s", scope)
        raise RecipientResolutionError(
            scope["master_community_id"], scope["community_id"], scope["tower_id"],
        )

    base_cc = list_for_kind(config, kind)
    owner_cc = _owner_cc(category, unit_id, ownership)
    primary, cc = dedupe([requester_email] if requester_email else [], base_cc + owner_cc)

    resolution = Resolution(
        primary=primary,
        cc=cc,
        configuration_id=config.id,
        history_id=latest_recipient_snapshot_id(config.id),
        scope_level=level,
    )
    logger.debug(
        "Resolved %s/%s recipients at %s level: primary=%d cc=%d",
        kind, category, level, len(primary), len(cc),
    )
    return resolution
