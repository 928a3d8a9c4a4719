"""
Lotline — Event Store

Append-only access to auction_events. append() is the only write path;
everything else is a read. Operates inside the caller's session and
transaction so a snapshot pair's events commit or roll back together.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Iterable, NamedTuple, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import EventType
from src.engine.diff import EventDraft
from src.models.event import AuctionEvent
from src.utils.timeutil import utcnow

logger = structlog.get_logger(__name__)


class AppendResult(NamedTuple):
    inserted: list[AuctionEvent]
    skipped: int


class EventStore:
    """Event log bound to one AsyncSession."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # -----------------------------------------------------------------------
    # Write
    # -----------------------------------------------------------------------

    async def exists(
        self,
        event_type: EventType | str,
        external_lot_id: str,
        snapshot_id: uuid.UUID,
        previous_snapshot_id: uuid.UUID,
    ) -> bool:
        stmt = select(AuctionEvent.id).where(
            AuctionEvent.event_type == EventType(event_type).value,
            AuctionEvent.external_lot_id == external_lot_id,
            AuctionEvent.snapshot_id == snapshot_id,
            AuctionEvent.previous_snapshot_id == previous_snapshot_id,
        ).limit(1)
        return (await self.session.execute(stmt)).first() is not None

    async def _existing_keys(
        self, snapshot_id: uuid.UUID, previous_snapshot_id: uuid.UUID
    ) -> set[tuple[str, str]]:
        stmt = select(AuctionEvent.event_type, AuctionEvent.external_lot_id).where(
            AuctionEvent.snapshot_id == snapshot_id,
            AuctionEvent.previous_snapshot_id == previous_snapshot_id,
        )
        return {(row.event_type, row.external_lot_id) for row in await self.session.execute(stmt)}

    async def append(
        self,
        drafts: Iterable[EventDraft],
        snapshot_id: uuid.UUID,
        previous_snapshot_id: uuid.UUID,
        created_at: datetime | None = None,
    ) -> AppendResult:
        """
        Persist drafts for one snapshot pair, skipping any whose
        (event_type, external_lot_id, pair) already exists.

        Flushes but does not commit. The unique constraint backs the
        existence check against concurrent writers.
        """
        created_at = created_at or utcnow()
        seen = await self._existing_keys(snapshot_id, previous_snapshot_id)
        inserted: list[AuctionEvent] = []
        skipped = 0

        for draft in drafts:
            key = (draft.event_type.value, draft.external_lot_id)
            if key in seen:
                skipped += 1
                continue
            seen.add(key)
            event = AuctionEvent(
                event_type=draft.event_type.value,
                external_lot_id=draft.external_lot_id,
                vehicle_identifier=draft.vehicle_identifier,
                payload=draft.payload,
                snapshot_id=snapshot_id,
                previous_snapshot_id=previous_snapshot_id,
                created_at=created_at,
            )
            self.session.add(event)
            inserted.append(event)

        await self.session.flush()
        logger.debug(
            "events_appended",
            snapshot_id=str(snapshot_id),
            previous_snapshot_id=str(previous_snapshot_id),
            inserted=len(inserted),
            skipped=skipped,
        )
        return AppendResult(inserted=inserted, skipped=skipped)

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def timeline_for_lot(self, external_lot_id: str) -> list[AuctionEvent]:
        """All events for a lot, oldest first."""
        stmt = (
            select(AuctionEvent)
            .where(AuctionEvent.external_lot_id == external_lot_id)
            .order_by(AuctionEvent.created_at, AuctionEvent.id)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def timeline_for_vehicle(
        self,
        vehicle_identifier: str,
        event_types: Sequence[EventType] | None = None,
    ) -> list[AuctionEvent]:
        """All events for a vehicle across its lots, newest first."""
        stmt = select(AuctionEvent).where(AuctionEvent.vehicle_identifier == vehicle_identifier)
        if event_types:
            stmt = stmt.where(AuctionEvent.event_type.in_([EventType(t).value for t in event_types]))
        stmt = stmt.order_by(AuctionEvent.created_at.desc(), AuctionEvent.id.desc())
        return list((await self.session.execute(stmt)).scalars().all())

    async def query(
        self,
        external_lot_id: str | None = None,
        vehicle_identifier: str | None = None,
        event_type: EventType | str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[AuctionEvent]:
        """Filtered read for monitoring and debugging. Oldest first."""
        stmt = select(AuctionEvent)
        if external_lot_id is not None:
            stmt = stmt.where(AuctionEvent.external_lot_id == external_lot_id)
        if vehicle_identifier is not None:
            stmt = stmt.where(AuctionEvent.vehicle_identifier == vehicle_identifier)
        if event_type is not None:
            stmt = stmt.where(AuctionEvent.event_type == EventType(event_type).value)
        if since is not None:
            stmt = stmt.where(AuctionEvent.created_at >= since)
        if until is not None:
            stmt = stmt.where(AuctionEvent.created_at < until)
        stmt = stmt.order_by(AuctionEvent.created_at, AuctionEvent.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list((await self.session.execute(stmt)).scalars().all())
