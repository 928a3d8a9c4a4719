"""
Lotline — Auction Event Model

Append-only fact log written by the snapshot diff engine. Rows are never
updated or deleted; the mapper guards below enforce that at the ORM level.

Events reference snapshots by id only (no FK) so snapshot retention never
touches the log.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    TIMESTAMP,
    Index,
    String,
    UniqueConstraint,
    Uuid,
    event,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, BigIntPK, JSONPayload


class AuctionEvent(Base):
    """
    One detected change between an ordered pair of snapshots.

    The (event_type, external_lot_id, snapshot_id, previous_snapshot_id)
    tuple is unique: re-diffing the same pair can never duplicate an event.
    """

    __tablename__ = "auction_events"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="appeared, disappeared, relisted, price_changed, date_changed, status_changed, updated",
    )
    external_lot_id: Mapped[str] = mapped_column(
        String(64), nullable=False, comment="Lot the event is about (old lot for relisted)"
    )
    vehicle_identifier: Mapped[str | None] = mapped_column(
        String(64), nullable=True, comment="Canonical vehicle identifier, if known"
    )
    payload: Mapped[dict] = mapped_column(
        JSONPayload, nullable=False, default=dict, comment="Before/after of relevant fields"
    )
    snapshot_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, nullable=False, comment="Current snapshot of the diffed pair"
    )
    previous_snapshot_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, nullable=False, comment="Previous snapshot of the diffed pair"
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "event_type",
            "external_lot_id",
            "snapshot_id",
            "previous_snapshot_id",
            name="uq_auction_events_pair",
        ),
        Index("ix_auction_events_lot_created", "external_lot_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<AuctionEvent id={self.id!r} type={self.event_type!r} "
            f"lot={self.external_lot_id!r}>"
        )


# Vehicle timeline: newest first per event type.
Index(
    "ix_auction_events_vehicle_type_created",
    AuctionEvent.vehicle_identifier,
    AuctionEvent.event_type,
    AuctionEvent.created_at.desc(),
)


class AppendOnlyViolation(RuntimeError):
    """Raised when code tries to mutate a persisted event."""


@event.listens_for(AuctionEvent, "before_update")
def _reject_update(mapper, connection, target):
    raise AppendOnlyViolation(f"auction_events is append-only (update of id={target.id})")


@event.listens_for(AuctionEvent, "before_delete")
def _reject_delete(mapper, connection, target):
    raise AppendOnlyViolation(f"auction_events is append-only (delete of id={target.id})")
