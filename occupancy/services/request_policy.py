"""
Request-type policy — per-category field rules and auto-approval eligibility.

The field tables are configuration (``REQUIRED_FIELDS``,
``RENEWAL_REQUIRED_FIELDS``, ``AUTO_APPROVAL_FIELDS``,
``AUTO_APPROVAL_KINDS`` on the Flask config; defaults in
``occupancy.config``). This module only interprets them.

Two field sets per category:
    required       — a submission missing any of these is rejected outright
    auto-approval  — all present (and unexpired) → approved on submission

Usage:
    from occupancy.services.request_policy import validate_detail, is_auto_approvable

    clean = validate_detail("tenant", payload, kind="move-in")
    if is_auto_approvable("tenant", clean, kind="move-in"):
        ...
"""

import logging
from datetime import date

from email_validator import EmailNotValidError, validate_email
from flask import current_app, has_app_context

from occupancy.config import (
    DEFAULT_AUTO_APPROVAL_FIELDS,
    DEFAULT_AUTO_APPROVAL_KINDS,
    DEFAULT_RENEWAL_REQUIRED_FIELDS,
    DEFAULT_REQUIRED_FIELDS,
)
from occupancy.core.exceptions import ValidationError
from occupancy.models.transition import DETAIL_CLASSES, REQUEST_CATEGORIES, REQUEST_KINDS
from occupancy.utils.helpers import parse_bool, parse_date_input

logger = logging.getLogger(__name__)

EMAIL_FIELDS = frozenset({"email", "company_email"})
COUNT_FIELDS = frozenset({"adults", "children", "household_staffs", "pets"})
BOOLEAN_FIELDS = frozenset({"people_of_determination"})

# (start, end) pairs: end must not precede start
DATE_RANGES = (
    ("tenancy_contract_start_date", "tenancy_contract_end_date"),
    ("unit_permit_start_date", "unit_permit_expiry_date"),
    ("lease_start_date", "lease_end_date"),
)

# A past value in any of these blocks auto-approval
EXPIRY_FIELDS = (
    "emirates_id_expiry_date",
    "trade_license_expiry_date",
    "unit_permit_expiry_date",
    "dtcm_expiry_date",
    "tenancy_contract_end_date",
    "lease_end_date",
)

# Categories whose occupancy must include at least one adult
_ADULT_REQUIRED = frozenset({"owner", "tenant"})


def _policy(key: str, default: dict) -> dict:
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _check_category(category: str, kind: str) -> None:
    if kind not in REQUEST_KINDS:
        raise ValidationError(f"Unknown request kind '{kind}'", details={"kind": "unknown"})
    if category not in REQUEST_CATEGORIES:
        raise ValidationError(
            f"Unknown requester category '{category}'", details={"category": "unknown"},
        )
    if kind == "renewal" and category == "owner":
        raise ValidationError(
            "Owners cannot request an account renewal",
            details={"category": "not allowed for renewal"},
        )


# ── Field sets ───────────────────────────────────────────────────────────────


def required_fields(category: str, kind: str = "move-in") -> set[str]:
    """Fields a submission of this category must carry."""
    fields = set(_policy("REQUIRED_FIELDS", DEFAULT_REQUIRED_FIELDS).get(category, ()))
    if kind == "renewal":
        fields |= set(
            _policy("RENEWAL_REQUIRED_FIELDS", DEFAULT_RENEWAL_REQUIRED_FIELDS).get(category, ())
        )
    return fields


def auto_approval_fields(category: str, kind: str = "move-in") -> set[str]:
    """Fields that must all be present for auto-approval; empty if the kind never auto-approves."""
    kinds = _policy("AUTO_APPROVAL_KINDS", DEFAULT_AUTO_APPROVAL_KINDS)
    if category not in kinds.get(kind, ()):
        return set()
    return set(_policy("AUTO_APPROVAL_FIELDS", DEFAULT_AUTO_APPROVAL_FIELDS).get(category, ()))


# ── Validation ───────────────────────────────────────────────────────────────


def _normalize_field(category: str, name: str, value, errors: dict):
    """Coerce one field; record a message in ``errors`` on failure."""
    if _is_blank(value):
        return None

    if name in EMAIL_FIELDS:
        try:
            return validate_email(str(value).strip(), check_deliverability=False).normalized
        except EmailNotValidError as e:
            errors[name] = f"invalid email: {e}"
            return None

    if name.endswith("_date"):
        try:
            return parse_date_input(value)
        except ValueError as e:
            errors[name] = str(e)
            return None

    if name in COUNT_FIELDS:
        if isinstance(value, bool):
            errors[name] = "must be a whole number"
            return None
        try:
            count = int(value)
        except (TypeError, ValueError):
            errors[name] = "must be a whole number"
            return None
        if count < 0:
            errors[name] = "must not be negative"
            return None
        if name == "adults" and category in _ADULT_REQUIRED and count < 1:
            errors[name] = "at least one adult is required"
            return None
        return count

    if name in BOOLEAN_FIELDS:
        try:
            return parse_bool(value)
        except ValueError:
            errors[name] = "must be true or false"
            return None

    return str(value).strip()


def validate_detail(category: str, detail: dict | None, kind: str = "move-in") -> dict:
    """
    Validate and normalize a category payload.

    Returns a dict with every field of the category's variant (absent ones
    as None). Raises ValidationError listing every failing field.
    """
    _check_category(category, kind)
    detail = detail or {}
    known = DETAIL_CLASSES[category].FIELDS
    errors: dict[str, str] = {}

    for name in detail:
        if name not in known:
            errors[name] = f"not a {category} field"

    clean = {name: _normalize_field(category, name, detail.get(name), errors) for name in known}

    for name in sorted(required_fields(category, kind)):
        if name not in errors and clean.get(name) is None:
            errors[name] = "required"

    for start, end in DATE_RANGES:
        if clean.get(start) and clean.get(end) and clean[end] < clean[start]:
            errors[end] = f"must not be earlier than {start}"

    if errors:
        logger.info(
            "Rejected %s %s payload: %s", kind, category, ", ".join(sorted(errors)),
        )
        raise ValidationError(f"Invalid {category} {kind} request", details=errors)

    return clean


def expired_fields(detail: dict, today: date | None = None) -> list[str]:
    """Expiry-type fields whose date has already passed."""
    today = today or date.today()
    return [name for name in EXPIRY_FIELDS if detail.get(name) and detail[name] < today]


def is_auto_approvable(
    category: str,
    detail: dict,
    kind: str = "move-in",
    manual_review: bool = False,
    today: date | None = None,
) -> bool:
    """
    True when the request may skip manual review.

    ``detail`` must already be normalized by validate_detail().
    """
    if manual_review:
        return False
    fields = auto_approval_fields(category, kind)
    if not fields:
        return False
    if any(_is_blank(detail.get(name)) for name in fields):
        return False
    return not expired_fields(detail, today)
