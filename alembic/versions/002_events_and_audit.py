"""Auction event log, processing audit and batch runs

Revision ID: 002_events_and_audit
Revises: 001_snapshots_and_canonical
Create Date: 2025-10-20
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

# revision identifiers
revision: str = "002_events_and_audit"
down_revision: Union[str, None] = "001_snapshots_and_canonical"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- auction_events (append-only) ---
    op.create_table(
        "auction_events",
        sa.Column("id", sa.BIGINT(), sa.Identity(), primary_key=True),
        sa.Column("event_type", sa.String(32), nullable=False),
        sa.Column("external_lot_id", sa.String(64), nullable=False),
        sa.Column("vehicle_identifier", sa.String(64), nullable=True),
        sa.Column("payload", JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        # No FK: snapshot retention must never touch the event log.
        sa.Column("snapshot_id", UUID(as_uuid=True), nullable=False),
        sa.Column("previous_snapshot_id", UUID(as_uuid=True), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint(
            "event_type", "external_lot_id", "snapshot_id", "previous_snapshot_id",
            name="uq_auction_events_pair",
        ),
        sa.CheckConstraint(
            "event_type IN ('appeared', 'disappeared', 'relisted', 'price_changed', "
            "'date_changed', 'status_changed', 'updated')",
            name="ck_auction_events_type",
        ),
    )
    op.create_index("ix_auction_events_lot_created", "auction_events", ["external_lot_id", "created_at"])
    op.create_index(
        "ix_auction_events_vehicle_type_created",
        "auction_events",
        ["vehicle_identifier", "event_type", sa.text("created_at DESC")],
        postgresql_where=sa.text("vehicle_identifier IS NOT NULL"),
    )

    # Database-level append-only guard.
    op.execute(
        """
        CREATE OR REPLACE FUNCTION auction_events_append_only() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'auction_events is append-only';
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_auction_events_append_only
        BEFORE UPDATE OR DELETE ON auction_events
        FOR EACH ROW EXECUTE FUNCTION auction_events_append_only();
        """
    )

    # --- processing_audit ---
    op.create_table(
        "processing_audit",
        sa.Column("id", sa.BIGINT(), sa.Identity(), primary_key=True),
        sa.Column("job", sa.String(16), nullable=False),
        sa.Column("error_class", sa.String(16), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("staged_record_id", sa.BIGINT(), nullable=True),
        sa.Column("external_lot_id", sa.String(64), nullable=True),
        sa.Column("constraint_name", sa.String(), nullable=True),
        sa.Column("detail", JSONB(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_processing_audit_staged_record", "processing_audit", ["staged_record_id"])
    op.create_index("ix_processing_audit_job_created", "processing_audit", ["job", "created_at"])

    # --- batch_runs ---
    op.create_table(
        "batch_runs",
        sa.Column("id", sa.BIGINT(), sa.Identity(), primary_key=True),
        sa.Column("job", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("finished_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("execution_ms", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("counts", JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("errors_by_class", JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("error_message", sa.String(), nullable=True),
    )
    op.create_index("ix_batch_runs_job_started", "batch_runs", ["job", "started_at"])


def downgrade() -> None:
    op.drop_table("batch_runs")
    op.drop_table("processing_audit")
    op.execute("DROP TRIGGER IF EXISTS trg_auction_events_append_only ON auction_events")
    op.execute("DROP FUNCTION IF EXISTS auction_events_append_only()")
    op.drop_table("auction_events")
