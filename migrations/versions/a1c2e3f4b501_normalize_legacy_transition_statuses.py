"""normalize_legacy_transition_statuses

Rewrite pre-lifecycle status values and owner renewals:

    open → new, rfi → rfi-pending, cancel → cancelled, approve → approved
    renewal + owner → renewal + hho-owner

Revision ID: a1c2e3f4b501
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "a1c2e3f4b501"
down_revision = None
branch_labels = None
depends_on = None


LEGACY_STATUS_MAP = {
    "open": "new",
    "rfi": "rfi-pending",
    "cancel": "cancelled",
    "approve": "approved",
}

requests = sa.table(
    "transition_requests",
    sa.column("id", sa.Integer),
    sa.column("kind", sa.String),
    sa.column("category", sa.String),
    sa.column("status", sa.String),
    sa.column("version", sa.Integer),
)

log_entries = sa.table(
    "transition_log_entries",
    sa.column("from_status", sa.String),
    sa.column("to_status", sa.String),
)

details = sa.table(
    "transition_request_details",
    sa.column("id", sa.Integer),
    sa.column("request_id", sa.Integer),
    sa.column("category", sa.String),
)

hho_owner_details = sa.table(
    "hho_owner_request_details",
    sa.column("id", sa.Integer),
)


def _table_names(bind) -> set[str]:
    insp = sa.inspect(bind)
    return set(insp.get_table_names())


def upgrade():
    bind = op.get_bind()
    tables = _table_names(bind)
    if "transition_requests" not in tables:
        return

    for legacy, current in LEGACY_STATUS_MAP.items():
        op.execute(
            requests.update()
            .where(requests.c.status == legacy)
            .values(status=current, version=requests.c.version + 1)
        )

    if "transition_log_entries" in tables:
        for legacy, current in LEGACY_STATUS_MAP.items():
            op.execute(
                log_entries.update()
                .where(log_entries.c.from_status == legacy)
                .values(from_status=current)
            )
            op.execute(
                log_entries.update()
                .where(log_entries.c.to_status == legacy)
                .values(to_status=current)
            )

    request_ids = [
        row[0] for row in bind.execute(
            sa.select(requests.c.id).where(
                requests.c.kind == "renewal", requests.c.category == "owner",
            )
        )
    ]
    if not request_ids:
        return

    if {"transition_request_details", "hho_owner_request_details"} <= tables:
        detail_ids = [
            row[0] for row in bind.execute(
                sa.select(details.c.id).where(
                    details.c.request_id.in_(request_ids), details.c.category == "owner",
                )
            )
        ]
        for detail_id in detail_ids:
            op.execute(hho_owner_details.insert().values(id=detail_id))
        if detail_ids:
            op.execute(
                details.update()
                .where(details.c.id.in_(detail_ids))
                .values(category="hho-owner")
            )

    op.execute(
        requests.update()
        .where(requests.c.id.in_(request_ids))
        .values(category="hho-owner", version=requests.c.version + 1)
    )


def downgrade():
    # Legacy values are not restored; the mapping is many-to-one with
    # values written after the upgrade.
    pass
