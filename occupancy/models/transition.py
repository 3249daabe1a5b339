"""
Occupancy Transition Service
Transition request domain models.

Models:
    - TransitionRequest:  one move-in, move-out or account-renewal case
    - RequestDetail:      category-specific payload (joined-table inheritance)
        - OwnerDetail
        - TenantDetail
        - HhoCompanyDetail
        - HhoOwnerDetail

Architecture:
    Unit ──1:N──▶ TransitionRequest ──1:1──▶ RequestDetail (variant keyed by category)
    TransitionRequest ──1:N──▶ TransitionLogEntry
    TransitionRequest ──N:1──▶ TransitionRequest  (renewal/move-out → originating move-in)

Lifecycle states:
    new → rfi-pending → rfi-submitted → approved → closed
    new | rfi-submitted → cancelled       (reviewer rejects)
    new | rfi-pending   → user-cancelled  (requester withdraws)
"""

from datetime import date, datetime, timezone

from occupancy.models import db

# ── Constants ────────────────────────────────────────────────────────────────

REQUEST_KINDS = ("move-in", "move-out", "renewal")
REQUEST_CATEGORIES = ("owner", "tenant", "hho-company", "hho-owner")

REQUEST_NO_PREFIX = {
    "move-in": "MIN",
    "move-out": "MOUT",
    "renewal": "ARR",
}

STATUSES = (
    "new",
    "rfi-pending",
    "rfi-submitted",
    "approved",
    "user-cancelled",
    "cancelled",
    "closed",
)
TERMINAL_STATUSES = frozenset({"user-cancelled", "cancelled", "closed"})
CANCELLED_STATUSES = frozenset({"user-cancelled", "cancelled"})

REVIEWER_ROLES = frozenset({"community-admin", "super-admin"})
ACTOR_TYPES = frozenset({"community-admin", "super-admin", "system", "user", "security"})


# ── Lifecycle Transition Guards ──────────────────────────────────────────────
# current status → {requested status: actor types allowed to make the move}

STATUS_TRANSITIONS = {
    "new": {
        "rfi-pending":    REVIEWER_ROLES,
        "approved":       REVIEWER_ROLES | {"system"},
        "cancelled":      REVIEWER_ROLES,
        "user-cancelled": frozenset({"user"}),
    },
    "rfi-pending": {
        "rfi-submitted":  frozenset({"user"}),
        "user-cancelled": frozenset({"user"}),
    },
    "rfi-submitted": {
        "approved":       REVIEWER_ROLES,
        "rfi-pending":    REVIEWER_ROLES,
        "cancelled":      REVIEWER_ROLES,
    },
    "approved": {
        "closed":         REVIEWER_ROLES | {"system", "security"},
    },
    "user-cancelled": {},
    "cancelled":      {},
    "closed":         {},
}

# Values written by earlier releases, before the seven-state set
LEGACY_STATUS_MAP = {
    "open": "new",
    "rfi": "rfi-pending",
    "cancel": "cancelled",
    "approve": "approved",
}


# ── Detail field groups ──────────────────────────────────────────────────────

OCCUPANCY_FIELDS = (
    "adults",
    "children",
    "household_staffs",
    "pets",
    "people_of_determination",
    "determination_details",
)


def _iso(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


class TransitionRequest(db.Model):
    """
    Occupancy transition case.

    Business rules:
    - status changes only through the lifecycle engine; every accepted change
      writes exactly one TransitionLogEntry in the same commit.
    - Terminal statuses (user-cancelled, cancelled, closed) accept no
      further transitions.
    - Rows are never deleted.
    - ``version`` is the optimistic lock counter; SQLAlchemy bumps it on every
      UPDATE and raises StaleDataError when another writer got there first.
    """

    __tablename__ = "transition_requests"

    id = db.Column(db.Integer, primary_key=True)
    request_no = db.Column(
        db.String(40), nullable=True, unique=True,
        comment="MIN-<unit>-<id> | MOUT-<unit>-<id> | ARR-<id:06d>",
    )
    kind = db.Column(db.String(20), nullable=False, comment="move-in | move-out | renewal")
    category = db.Column(
        db.String(20), nullable=False,
        comment="owner | tenant | hho-company | hho-owner",
    )

    unit_id = db.Column(
        db.Integer, db.ForeignKey("units.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    user_id = db.Column(db.Integer, nullable=False, index=True)
    requester_email = db.Column(db.String(255), nullable=False)

    # Scope tuple captured at submission
    master_community_id = db.Column(db.Integer, nullable=False)
    community_id = db.Column(db.Integer, nullable=False)
    tower_id = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(30), nullable=False, default="new", index=True)
    auto_approved = db.Column(db.Boolean, nullable=False, default=False)
    manual_review = db.Column(
        db.Boolean, nullable=False, default=False,
        comment="Raised by the submitter or an integration; blocks auto-approval",
    )

    move_date = db.Column(db.Date, nullable=True)
    comments = db.Column(db.Text, nullable=True)

    linked_request_id = db.Column(
        db.Integer, db.ForeignKey("transition_requests.id", ondelete="SET NULL"), nullable=True,
        comment="renewal / move-out → originating move-in",
    )

    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    # Relationships
    unit = db.relationship("Unit", lazy="joined")
    detail = db.relationship(
        "RequestDetail", uselist=False, back_populates="request", cascade="all, delete-orphan",
    )
    log_entries = db.relationship(
        "TransitionLogEntry", back_populates="request", lazy="dynamic",
        order_by="(TransitionLogEntry.created_at, TransitionLogEntry.id)",
    )
    linked_request = db.relationship("TransitionRequest", remote_side=[id])

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        db.Index("ix_transition_request_unit_kind", "unit_id", "kind", "status"),
        db.Index("ix_transition_request_scope", "master_community_id", "community_id", "tower_id"),
    )

    @property
    def scope(self) -> dict:
        return {
            "master_community_id": self.master_community_id,
            "community_id": self.community_id,
            "tower_id": self.tower_id,
        }

    @property
    def primary_email(self) -> str:
        """Addressee of status mail: the detail's contact address, else the account email."""
        contact = self.detail.contact_email() if self.detail is not None else None
        return contact or self.requester_email

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self, include_detail=True):
        result = {
            "id": self.id,
            "request_no": self.request_no,
            "kind": self.kind,
            "category": self.category,
            "unit_id": self.unit_id,
            "user_id": self.user_id,
            "requester_email": self.requester_email,
            "primary_email": self.primary_email,
            "master_community_id": self.master_community_id,
            "community_id": self.community_id,
            "tower_id": self.tower_id,
            "status": self.status,
            "auto_approved": self.auto_approved,
            "manual_review": self.manual_review,
            "move_date": self.move_date.isoformat() if self.move_date else None,
            "comments": self.comments,
            "linked_request_id": self.linked_request_id,
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_detail:
            result["detail"] = self.detail.to_dict() if self.detail else None
        return result

    def __repr__(self):
        return f"<TransitionRequest {self.id}: {self.request_no} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# Request detail: tagged union keyed by category
# ═════════════════════════════════════════════════════════════════════════════


class RequestDetail(db.Model):
    """
    Category-specific payload, one row per TransitionRequest.

    Occupancy counts are shared by every variant and live on the base table;
    each variant adds its own columns in a joined table. ``FIELDS`` lists the
    payload keys a variant accepts.
    """

    __tablename__ = "transition_request_details"

    FIELDS = OCCUPANCY_FIELDS
    # Payload field holding the occupant's own mail address, if the variant has one
    CONTACT_FIELD = None

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer, db.ForeignKey("transition_requests.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    category = db.Column(db.String(20), nullable=False)

    adults = db.Column(db.Integer, nullable=True)
    children = db.Column(db.Integer, nullable=True)
    household_staffs = db.Column(db.Integer, nullable=True)
    pets = db.Column(db.Integer, nullable=True)
    people_of_determination = db.Column(db.Boolean, nullable=True)
    determination_details = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    request = db.relationship("TransitionRequest", back_populates="detail")

    __mapper_args__ = {"polymorphic_on": category}

    def payload(self) -> dict:
        """Current field values, keyed by FIELDS."""
        return {name: getattr(self, name) for name in self.FIELDS}

    def contact_email(self) -> str | None:
        return getattr(self, self.CONTACT_FIELD) if self.CONTACT_FIELD else None

    def to_dict(self):
        data = {name: _iso(value) for name, value in self.payload().items()}
        data["category"] = self.category
        return data

    def __repr__(self):
        return f"<{type(self).__name__} request={self.request_id}>"


class OwnerDetail(RequestDetail):
    """Owner moving into their own unit: occupancy counts only."""

    __mapper_args__ = {"polymorphic_identity": "owner"}


class TenantDetail(RequestDetail):
    __tablename__ = "tenant_request_details"

    FIELDS = OCCUPANCY_FIELDS + (
        "first_name",
        "last_name",
        "email",
        "dial_code",
        "phone_number",
        "nationality",
        "emirates_id_number",
        "emirates_id_expiry_date",
        "tenancy_contract_start_date",
        "tenancy_contract_end_date",
    )
    CONTACT_FIELD = "email"

    id = db.Column(db.Integer, db.ForeignKey("transition_request_details.id", ondelete="CASCADE"),
                   primary_key=True)
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    email = db.Column(db.String(255))
    dial_code = db.Column(db.String(10))
    phone_number = db.Column(db.String(30))
    nationality = db.Column(db.String(100))
    emirates_id_number = db.Column(db.String(50))
    emirates_id_expiry_date = db.Column(db.Date)
    tenancy_contract_start_date = db.Column(db.Date)
    tenancy_contract_end_date = db.Column(db.Date)

    __mapper_args__ = {"polymorphic_identity": "tenant"}


class HhoCompanyDetail(RequestDetail):
    """Holiday-home operator company running the unit as a short-let."""

    __tablename__ = "hho_company_request_details"

    FIELDS = OCCUPANCY_FIELDS + (
        "name",
        "company",
        "company_email",
        "country_code",
        "operator_office_number",
        "trade_license_number",
        "trade_license_expiry_date",
        "unit_permit_number",
        "unit_permit_start_date",
        "unit_permit_expiry_date",
        "lease_start_date",
        "lease_end_date",
        "dtcm_expiry_date",
    )
    CONTACT_FIELD = "company_email"

    id = db.Column(db.Integer, db.ForeignKey("transition_request_details.id", ondelete="CASCADE"),
                   primary_key=True)
    name = db.Column(db.String(200), comment="Contact person")
    company = db.Column(db.String(200))
    company_email = db.Column(db.String(255))
    country_code = db.Column(db.String(10))
    operator_office_number = db.Column(db.String(30))
    trade_license_number = db.Column(db.String(100))
    trade_license_expiry_date = db.Column(db.Date)
    unit_permit_number = db.Column(db.String(100))
    unit_permit_start_date = db.Column(db.Date)
    unit_permit_expiry_date = db.Column(db.Date)
    lease_start_date = db.Column(db.Date)
    lease_end_date = db.Column(db.Date)
    dtcm_expiry_date = db.Column(db.Date)

    __mapper_args__ = {"polymorphic_identity": "hho-company"}


class HhoOwnerDetail(RequestDetail):
    """Owner operating their own unit as a holiday home."""

    __tablename__ = "hho_owner_request_details"

    FIELDS = OCCUPANCY_FIELDS + (
        "owner_first_name",
        "owner_last_name",
        "email",
        "unit_permit_number",
        "unit_permit_start_date",
        "unit_permit_expiry_date",
        "dtcm_permit_number",
        "dtcm_expiry_date",
    )
    CONTACT_FIELD = "email"

    id = db.Column(db.Integer, db.ForeignKey("transition_request_details.id", ondelete="CASCADE"),
                   primary_key=True)
    owner_first_name = db.Column(db.String(100))
    owner_last_name = db.Column(db.String(100))
    email = db.Column(db.String(255))
    unit_permit_number = db.Column(db.String(100))
    unit_permit_start_date = db.Column(db.Date)
    unit_permit_expiry_date = db.Column(db.Date)
    dtcm_permit_number = db.Column(db.String(100))
    dtcm_expiry_date = db.Column(db.Date)

    __mapper_args__ = {"polymorphic_identity": "hho-owner"}


DETAIL_CLASSES = {
    "owner": OwnerDetail,
    "tenant": TenantDetail,
    "hho-company": HhoCompanyDetail,
    "hho-owner": HhoOwnerDetail,
}
