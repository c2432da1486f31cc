"""Create dispatch audit event table."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "dispatch_events",
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("backend_id", sa.String(), nullable=True),
        sa.Column("payload_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("seq"),
    )
    op.create_index("ix_dispatch_events_event_id", "dispatch_events", ["event_id"], unique=True)
    op.create_index("ix_dispatch_events_kind", "dispatch_events", ["kind"], unique=False)
    op.create_index("ix_dispatch_events_task_id", "dispatch_events", ["task_id"], unique=False)
    op.create_index(
        "ix_dispatch_events_backend_id",
        "dispatch_events",
        ["backend_id"],
        unique=False,
    )
    op.create_index(
        "idx_dispatch_events_task_time",
        "dispatch_events",
        ["task_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "idx_dispatch_events_kind_time",
        "dispatch_events",
        ["kind", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_dispatch_events_kind_time", table_name="dispatch_events")
    op.drop_index("idx_dispatch_events_task_time", table_name="dispatch_events")
    op.drop_index("ix_dispatch_events_backend_id", table_name="dispatch_events")
    op.drop_index("ix_dispatch_events_task_id", table_name="dispatch_events")
    op.drop_index("ix_dispatch_events_kind", table_name="dispatch_events")
    op.drop_index("ix_dispatch_events_event_id", table_name="dispatch_events")
    op.drop_table("dispatch_events")
