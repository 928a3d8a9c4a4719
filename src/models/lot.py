"""
Lotline — Canonical Lot Model

One row per auction attempt (external lot id). Business fields come from the
upsert engine; the outcome columns are written only by the outcome resolver.

Invariants:
- source_timestamp only advances (the merge watermark).
- outcome_confidence only increases.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BOOLEAN,
    DECIMAL as SA_DECIMAL,
    INTEGER,
    TIMESTAMP,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, BigIntPK


class CanonicalLot(Base):
    """A single auction attempt for a vehicle, plus its inferred outcome."""

    __tablename__ = "lots"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    external_lot_id: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, comment="Vendor lot number"
    )
    vehicle_identifier: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("vehicles.canonical_identifier"),
        nullable=False,
        comment="Canonical vehicle identifier",
    )
    source_timestamp: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="Merge watermark (monotonic)"
    )

    # --- Business fields ---
    auction_time: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="Scheduled auction date/time"
    )
    current_bid: Mapped[Decimal | None] = mapped_column(SA_DECIMAL(12, 2), nullable=True)
    buy_now_amount: Mapped[Decimal | None] = mapped_column(
        SA_DECIMAL(12, 2), nullable=True, comment="Buy-it-now / reserve price"
    )
    status: Mapped[str | None] = mapped_column(
        String(32), nullable=True, comment="Normalized status code"
    )
    sale_status_raw: Mapped[str | None] = mapped_column(String, nullable=True)
    yard_name: Mapped[str | None] = mapped_column(String, nullable=True)
    location_city: Mapped[str | None] = mapped_column(String, nullable=True)
    location_state: Mapped[str | None] = mapped_column(String, nullable=True)
    location_country: Mapped[str | None] = mapped_column(String, nullable=True)
    location_zip: Mapped[str | None] = mapped_column(String, nullable=True)
    damage_primary: Mapped[str | None] = mapped_column(String, nullable=True)
    damage_secondary: Mapped[str | None] = mapped_column(String, nullable=True)
    title_type: Mapped[str | None] = mapped_column(String, nullable=True)
    odometer: Mapped[int | None] = mapped_column(INTEGER, nullable=True)
    retail_value: Mapped[Decimal | None] = mapped_column(SA_DECIMAL(12, 2), nullable=True)
    repair_cost: Mapped[Decimal | None] = mapped_column(SA_DECIMAL(12, 2), nullable=True)
    runs_drives: Mapped[str | None] = mapped_column(String, nullable=True)
    has_keys: Mapped[bool | None] = mapped_column(BOOLEAN, nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)

    # --- Outcome (resolver-owned) ---
    outcome: Mapped[str | None] = mapped_column(
        String(16), nullable=True, comment="sold, not_sold, on_approval, unknown"
    )
    outcome_confidence: Mapped[Decimal | None] = mapped_column(
        SA_DECIMAL(3, 2), nullable=True, comment="Heuristic confidence in [0, 1]"
    )
    outcome_resolved_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    detection_method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    detection_notes: Mapped[str | None] = mapped_column(
        String, nullable=True, comment="Human-readable justification"
    )

    # --- Attempt chain ---
    relist_count: Mapped[int] = mapped_column(
        INTEGER, nullable=False, default=0, server_default="0"
    )
    previous_attempt_id: Mapped[int | None] = mapped_column(
        BigIntPK, ForeignKey("lots.id"), nullable=True, comment="Prior attempt for this vehicle"
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "outcome_confidence IS NULL OR (outcome_confidence >= 0 AND outcome_confidence <= 1)",
            name="ck_lots_outcome_confidence_range",
        ),
        Index("ix_lots_vehicle_identifier", "vehicle_identifier"),
        Index("ix_lots_outcome", "outcome"),
    )

    def __repr__(self) -> str:
        return (
            f"<CanonicalLot {self.external_lot_id!r} vehicle={self.vehicle_identifier!r} "
            f"outcome={self.outcome!r}>"
        )
