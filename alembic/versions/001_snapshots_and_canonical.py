"""Snapshots, staged records, canonical vehicles and lots

Revision ID: 001_snapshots_and_canonical
Revises: None
Create Date: 2025-10-20
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

# revision identifiers
revision: str = "001_snapshots_and_canonical"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- snapshots ---
    op.create_table(
        "snapshots",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
            comment="Snapshot identifier",
        ),
        sa.Column("captured_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("row_count", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("content_fingerprint", sa.String(64), nullable=False, comment="sha256 of the export content"),
        sa.Column("source_path", sa.String(), nullable=True),
        sa.Column("headers", JSONB(), nullable=True),
        sa.UniqueConstraint("content_fingerprint", name="uq_snapshots_content_fingerprint"),
    )
    op.create_index("ix_snapshots_captured_at", "snapshots", ["captured_at"])

    # --- staged_records ---
    op.create_table(
        "staged_records",
        sa.Column("id", sa.BIGINT(), sa.Identity(), primary_key=True),
        sa.Column(
            "snapshot_id",
            UUID(as_uuid=True),
            sa.ForeignKey("snapshots.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("row_number", sa.INTEGER(), nullable=False),
        sa.Column("external_lot_id", sa.String(64), nullable=True),
        sa.Column("vehicle_identifier_raw", sa.String(64), nullable=True),
        sa.Column("field_bag", JSONB(), nullable=False),
        sa.Column("source_timestamp", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("processed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("processed_source_timestamp", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.String(), nullable=True),
        sa.Column("ingested_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_staged_records_snapshot", "staged_records", ["snapshot_id"])
    op.create_index("ix_staged_records_lot_source_ts", "staged_records", ["external_lot_id", "source_timestamp"])
    # Upsert work queue: only unprocessed rows.
    op.create_index(
        "ix_staged_records_unprocessed",
        "staged_records",
        ["id"],
        postgresql_where=sa.text("processed_at IS NULL"),
    )

    # --- vehicles ---
    op.create_table(
        "vehicles",
        sa.Column("canonical_identifier", sa.String(32), primary_key=True),
        sa.Column("identifier_format", sa.String(16), nullable=False, comment="full_17, regional or legacy"),
        sa.Column("raw_identifier", sa.String(64), nullable=True),
        sa.Column("year", sa.INTEGER(), nullable=True),
        sa.Column("make", sa.String(), nullable=True),
        sa.Column("model", sa.String(), nullable=True),
        sa.Column("trim", sa.String(), nullable=True),
        sa.Column("body", sa.String(), nullable=True),
        sa.Column("fuel", sa.String(), nullable=True),
        sa.Column("transmission", sa.String(), nullable=True),
        sa.Column("drive", sa.String(), nullable=True),
        sa.Column("engine", sa.String(), nullable=True),
        sa.Column("color", sa.String(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # --- lots ---
    op.create_table(
        "lots",
        sa.Column("id", sa.BIGINT(), sa.Identity(), primary_key=True),
        sa.Column("external_lot_id", sa.String(64), nullable=False),
        sa.Column(
            "vehicle_identifier",
            sa.String(32),
            sa.ForeignKey("vehicles.canonical_identifier"),
            nullable=False,
        ),
        sa.Column("source_timestamp", sa.TIMESTAMP(timezone=True), nullable=True, comment="Merge watermark (monotonic)"),
        sa.Column("auction_time", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("current_bid", sa.DECIMAL(12, 2), nullable=True),
        sa.Column("buy_now_amount", sa.DECIMAL(12, 2), nullable=True),
        sa.Column("status", sa.String(32), nullable=True),
        sa.Column("sale_status_raw", sa.String(), nullable=True),
        sa.Column("yard_name", sa.String(), nullable=True),
        sa.Column("location_city", sa.String(), nullable=True),
        sa.Column("location_state", sa.String(), nullable=True),
        sa.Column("location_country", sa.String(), nullable=True),
        sa.Column("location_zip", sa.String(), nullable=True),
        sa.Column("damage_primary", sa.String(), nullable=True),
        sa.Column("damage_secondary", sa.String(), nullable=True),
        sa.Column("title_type", sa.String(), nullable=True),
        sa.Column("odometer", sa.INTEGER(), nullable=True),
        sa.Column("retail_value", sa.DECIMAL(12, 2), nullable=True),
        sa.Column("repair_cost", sa.DECIMAL(12, 2), nullable=True),
        sa.Column("runs_drives", sa.String(), nullable=True),
        sa.Column("has_keys", sa.BOOLEAN(), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("outcome", sa.String(16), nullable=True, comment="sold, not_sold, on_approval, unknown"),
        sa.Column("outcome_confidence", sa.DECIMAL(3, 2), nullable=True),
        sa.Column("outcome_resolved_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("detection_method", sa.String(32), nullable=True),
        sa.Column("detection_notes", sa.String(), nullable=True),
        sa.Column("relist_count", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("previous_attempt_id", sa.BIGINT(), sa.ForeignKey("lots.id"), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("external_lot_id", name="uq_lots_external_lot_id"),
        sa.CheckConstraint(
            "outcome IS NULL OR outcome IN ('sold', 'not_sold', 'on_approval', 'unknown')",
            name="ck_lots_outcome",
        ),
        sa.CheckConstraint(
            "outcome_confidence IS NULL OR (outcome_confidence >= 0 AND outcome_confidence <= 1)",
            name="ck_lots_outcome_confidence_range",
        ),
    )
    op.create_index("ix_lots_vehicle_identifier", "lots", ["vehicle_identifier"])
    op.create_index("ix_lots_outcome", "lots", ["outcome"])


def downgrade() -> None:
    op.drop_table("lots")
    op.drop_table("vehicles")
    op.drop_table("staged_records")
    op.drop_table("snapshots")
