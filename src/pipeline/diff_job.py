"""
Lotline — Snapshot Diff Job

Loads an ordered snapshot pair, runs the pure diff, and appends the
resulting events in a single transaction. Re-running a pair adds nothing:
EventStore.append skips events that already exist for the pair.

Failure semantics:
- fewer than two snapshots, or an inconsistent pair → SnapshotIntegrityError
- store unreachable → StoreUnavailableError
Either way nothing from the pair is committed; the next run retries.
"""

from __future__ import annotations

import uuid
from datetime import datetime

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import JobName
from src.engine.diff import SnapshotRow, diff_snapshots, index_rows
from src.errors import LotlineError, SnapshotIntegrityError, StoreUnavailableError, is_connectivity_error
from src.pipeline.summary import RunSummary, record_run
from src.store.events import EventStore
from src.store.snapshots import SnapshotStore
from src.utils.timeutil import ensure_utc

logger = structlog.get_logger(__name__)


class SnapshotDiffEngine:
    """Compares snapshot pairs and emits lifecycle events."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def run(
        self,
        previous_snapshot_id: uuid.UUID | None = None,
        current_snapshot_id: uuid.UUID | None = None,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> RunSummary:
        """
        Diff one snapshot pair. Without ids the two most recent snapshots
        are used.

        Returns the run summary; counts hold appeared/disappeared/common
        sizes, per-type event counts and events_inserted/events_skipped.
        """
        summary = RunSummary(job=JobName.DIFF, dry_run=dry_run)
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    store = SnapshotStore(session)
                    prev_id, curr_id = await self._resolve_pair(
                        store, previous_snapshot_id, current_snapshot_id
                    )
                    previous = await self._load(store, prev_id)
                    current = await self._load(store, curr_id)

                    result = diff_snapshots(previous, current)
                    summary.count("appeared_lots", len(result.appeared))
                    summary.count("disappeared_lots", len(result.disappeared))
                    summary.count("common_lots", len(result.common))
                    for event_type, n in result.counts().items():
                        summary.count(event_type, n)

                    if dry_run:
                        logger.info(
                            "diff_dry_run",
                            previous_snapshot_id=str(prev_id),
                            current_snapshot_id=str(curr_id),
                            events=len(result.events),
                        )
                    else:
                        appended = await EventStore(session).append(
                            result.events, curr_id, prev_id, created_at=now
                        )
                        summary.count("events_inserted", len(appended.inserted))
                        summary.count("events_skipped", appended.skipped)
                        logger.info(
                            "diff_events_emitted",
                            previous_snapshot_id=str(prev_id),
                            current_snapshot_id=str(curr_id),
                            inserted=len(appended.inserted),
                            skipped=appended.skipped,
                        )
        except LotlineError as exc:
            summary.fail(exc)
            raise
        except (SQLAlchemyError, OSError) as exc:
            if not is_connectivity_error(exc):
                summary.fail(exc)
                raise
            wrapped = StoreUnavailableError(f"store unavailable during diff: {exc}")
            summary.fail(wrapped)
            raise wrapped from exc
        finally:
            await record_run(self.session_factory, summary)
        return summary

    async def _resolve_pair(
        self,
        store: SnapshotStore,
        previous_snapshot_id: uuid.UUID | None,
        current_snapshot_id: uuid.UUID | None,
    ) -> tuple[uuid.UUID, uuid.UUID]:
        if previous_snapshot_id is None and current_snapshot_id is None:
            latest = await store.latest_snapshot_ids(limit=2)
            if len(latest) < 2:
                raise SnapshotIntegrityError("need_two_snapshots", available=len(latest))
            current_snapshot_id, previous_snapshot_id = latest
        elif previous_snapshot_id is None or current_snapshot_id is None:
            raise SnapshotIntegrityError("incomplete_snapshot_pair")

        if previous_snapshot_id == current_snapshot_id:
            raise SnapshotIntegrityError("identical_snapshot_pair", snapshot_id=str(current_snapshot_id))

        previous = await store.get(previous_snapshot_id)
        current = await store.get(current_snapshot_id)
        if previous is None or current is None:
            raise SnapshotIntegrityError(
                "snapshot_not_found",
                previous_snapshot_id=str(previous_snapshot_id),
                current_snapshot_id=str(current_snapshot_id),
            )
        if ensure_utc(previous.captured_at) > ensure_utc(current.captured_at):
            raise SnapshotIntegrityError(
                "snapshot_pair_out_of_order",
                previous_snapshot_id=str(previous_snapshot_id),
                current_snapshot_id=str(current_snapshot_id),
            )
        return previous_snapshot_id, current_snapshot_id

    async def _load(self, store: SnapshotStore, snapshot_id: uuid.UUID) -> dict[str, SnapshotRow]:
        records = await store.staged_rows(snapshot_id)
        return index_rows(
            SnapshotRow.from_field_bag(
                record_id=r.id,
                external_lot_id=r.external_lot_id,
                bag=r.field_bag,
                vehicle_identifier_raw=r.vehicle_identifier_raw,
                source_timestamp=r.source_timestamp,
            )
            for r in records
            if r.external_lot_id
        )
