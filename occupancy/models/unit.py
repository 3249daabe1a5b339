"""
Occupancy Transition Service
Unit registry mirror.

Models:
    - Unit: residential unit with its place in the community hierarchy
            (master community → community → tower) and the owner's email.

The authoritative registry lives outside this service; rows here are kept in
sync for ownership lookups and for deriving a request's scope when the caller
does not supply one.
"""

from datetime import datetime, timezone

from occupancy.models import db


class Unit(db.Model):
    """Residential unit. Read-only from the lifecycle engine's point of view."""

    __tablename__ = "units"

    id = db.Column(db.Integer, primary_key=True)
    unit_number = db.Column(db.String(50), nullable=False, index=True)

    # Community hierarchy: tower is optional (villa communities have none)
    master_community_id = db.Column(db.Integer, nullable=False, index=True)
    community_id = db.Column(db.Integer, nullable=False, index=True)
    tower_id = db.Column(db.Integer, nullable=True, index=True)

    owner_email = db.Column(db.String(255), nullable=True, comment="Current registered owner")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    @property
    def scope(self) -> dict:
        return {
            "master_community_id": self.master_community_id,
            "community_id": self.community_id,
            "tower_id": self.tower_id,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "unit_number": self.unit_number,
            "master_community_id": self.master_community_id,
            "community_id": self.community_id,
            "tower_id": self.tower_id,
            "owner_email": self.owner_email,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Unit {self.id}: {self.unit_number}>"
