"""
Lotline — Snapshot & StagedRecord Models

One Snapshot per export cycle, one StagedRecord per parsed row. Both are
time-windowed (see SnapshotStore.purge_expired); nothing downstream holds a
foreign key into them except staged_records itself.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    TIMESTAMP,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, BigIntPK, JSONPayload


class Snapshot(Base):
    """
    Immutable capture of one export cycle.

    content_fingerprint is the sha256 of the export file; re-ingesting the
    same file resolves to the existing snapshot.
    """

    __tablename__ = "snapshots"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        comment="Snapshot identifier",
    )
    captured_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        comment="When the export was captured (ordering key for diffs)",
    )
    row_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Rows in the export (excluding header)"
    )
    content_fingerprint: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, comment="sha256 of the export content"
    )
    source_path: Mapped[str | None] = mapped_column(
        String, nullable=True, comment="Where the export was read from"
    )
    headers: Mapped[list | None] = mapped_column(
        JSONPayload, nullable=True, comment="Column names, for schema drift tracking"
    )

    __table_args__ = (
        Index("ix_snapshots_captured_at", "captured_at"),
    )

    def __repr__(self) -> str:
        return f"<Snapshot id={self.id!r} captured_at={self.captured_at} rows={self.row_count}>"


class StagedRecord(Base):
    """
    One parsed export row tied to its Snapshot.

    processed_at / processed_source_timestamp form the processed marker: a
    record is eligible for merging while processed_at is NULL. A later
    snapshot re-supplying the lot arrives as a new, unprocessed record.
    """

    __tablename__ = "staged_records"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    snapshot_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("snapshots.id", ondelete="CASCADE"),
        nullable=False,
        comment="Owning snapshot",
    )
    row_number: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="1-indexed row number in the export"
    )
    external_lot_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, comment="Vendor lot number (merge key)"
    )
    vehicle_identifier_raw: Mapped[str | None] = mapped_column(
        String(64), nullable=True, comment="Identifier before canonicalization"
    )
    field_bag: Mapped[dict] = mapped_column(
        JSONPayload, nullable=False, comment="Full row as column -> value"
    )
    source_timestamp: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="Self-reported update time from the export"
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="Set once merged (or deterministically skipped)"
    )
    processed_source_timestamp: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="source_timestamp the marker was set for"
    )
    rejection_reason: Mapped[str | None] = mapped_column(
        String, nullable=True, comment="Last rejection/error reason, if any"
    )
    ingested_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_staged_records_snapshot", "snapshot_id"),
        Index("ix_staged_records_lot_source_ts", "external_lot_id", "source_timestamp"),
        Index("ix_staged_records_processed", "processed_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<StagedRecord id={self.id!r} lot={self.external_lot_id!r} "
            f"snapshot={self.snapshot_id!r}>"
        )
