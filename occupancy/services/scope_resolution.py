"""
Scope tuple helpers shared by the recipient resolver and template lookup.

A scope is a dict with ``master_community_id``, ``community_id`` and an
optional ``tower_id``. Lookups try the narrowest level first:

    tower             (master, community, tower)
    community         (master, community, tower IS NULL)
    master-community  (master, community IS NULL, tower IS NULL)
"""

from occupancy.core.exceptions import ValidationError

SCOPE_LEVELS = ("tower", "community", "master-community")


def _as_optional_int(scope: dict, key: str):
    value = scope.get(key)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid scope: {key} must be an integer", details={key: "integer"})


def normalize_scope(scope: dict | None) -> dict:
    """Coerce ids to int; master_community_id is mandatory."""
    scope = scope or {}
    clean = {
        "master_community_id": _as_optional_int(scope, "master_community_id"),
        "community_id": _as_optional_int(scope, "community_id"),
        "tower_id": _as_optional_int(scope, "tower_id"),
    }
    if clean["master_community_id"] is None:
        raise ValidationError(
            "Invalid scope: master_community_id is required",
            details={"master_community_id": "required"},
        )
    if clean["tower_id"] is not None and clean["community_id"] is None:
        raise ValidationError(
            "Invalid scope: a tower needs its community",
            details={"community_id": "required when tower_id is set"},
        )
    return clean


def scope_candidates(scope: dict):
    """
    Yield ``(level, filters)`` narrowest first, skipping levels the scope
    does not reach. ``filters(model)`` returns the WHERE clauses for a model
    carrying the three scope columns.
    """
    master = scope.get("master_community_id")
    community = scope.get("community_id")
    tower = scope.get("tower_id")

    if tower is not None:
        yield "tower", lambda model: [
            model.master_community_id == master,
            model.community_id == community,
            model.tower_id == tower,
        ]
    if community is not None:
        yield "community", lambda model: [
            model.master_community_id == master,
            model.community_id == community,
            model.tower_id.is_(None),
        ]
    yield "master-community", lambda model: [
        model.master_community_id == master,
        model.community_id.is_(None),
        model.tower_id.is_(None),
    ]
