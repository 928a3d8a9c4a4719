"""
Lotline — Snapshot Store

Input boundary of the lifecycle jobs: which snapshots exist, and the staged
rows inside each. Also owns the retention window for snapshots and staged
rows (events and canonical rows are never purged).
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.snapshot import Snapshot, StagedRecord
from src.utils.timeutil import utcnow

logger = structlog.get_logger(__name__)

# Always kept so the next diff has a baseline.
MIN_SNAPSHOTS_KEPT = 2


class SnapshotStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def latest_snapshot_ids(self, limit: int = 2) -> list[uuid.UUID]:
        """Most recent snapshot ids, newest first."""
        stmt = (
            select(Snapshot.id)
            .order_by(Snapshot.captured_at.desc())
            .limit(limit)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def get(self, snapshot_id: uuid.UUID) -> Snapshot | None:
        return await self.session.get(Snapshot, snapshot_id)

    async def find_by_fingerprint(self, fingerprint: str) -> Snapshot | None:
        stmt = select(Snapshot).where(Snapshot.content_fingerprint == fingerprint)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def staged_rows(self, snapshot_id: uuid.UUID) -> list[StagedRecord]:
        """Every staged record of a snapshot, in id order."""
        stmt = (
            select(StagedRecord)
            .where(StagedRecord.snapshot_id == snapshot_id)
            .order_by(StagedRecord.id)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def register(self, snapshot: Snapshot, records: list[StagedRecord]) -> Snapshot:
        """Add a snapshot and its staged rows. Flushes; the caller commits."""
        self.session.add(snapshot)
        await self.session.flush()
        for record in records:
            record.snapshot_id = snapshot.id
        self.session.add_all(records)
        await self.session.flush()
        return snapshot

    async def purge_expired(self, retention_days: int, now: datetime | None = None) -> int:
        """
        Delete snapshots captured before the retention window, together with
        their staged rows. The newest MIN_SNAPSHOTS_KEPT snapshots survive
        regardless of age. Returns the number of snapshots deleted.
        """
        cutoff = (now or utcnow()) - timedelta(days=retention_days)
        keep = await self.latest_snapshot_ids(limit=MIN_SNAPSHOTS_KEPT)

        stmt = select(Snapshot.id).where(Snapshot.captured_at < cutoff)
        if keep:
            stmt = stmt.where(Snapshot.id.not_in(keep))
        expired = list((await self.session.execute(stmt)).scalars().all())
        if not expired:
            return 0

        # Explicit child delete: SQLite does not enforce ON DELETE CASCADE by default.
        staged = await self.session.execute(
            delete(StagedRecord).where(StagedRecord.snapshot_id.in_(expired))
        )
        await self.session.execute(delete(Snapshot).where(Snapshot.id.in_(expired)))

        logger.info(
            "snapshots_purged",
            snapshots=len(expired),
            staged_records=staged.rowcount,
            cutoff=cutoff.isoformat(),
        )
        return len(expired)
