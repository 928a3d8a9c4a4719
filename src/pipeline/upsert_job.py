"""
Lotline — Canonical Upsert Job

Folds unprocessed staged records into canonical vehicles and lots.

Per record, inside its own savepoint:
1. Validate the vehicle identifier (rejections are audited, never fatal).
2. Ensure the vehicle exists; fill-missing-only merge of descriptive fields.
3. Insert or update the lot under the source_timestamp watermark.
4. Mark the record processed for its source_timestamp.

Any other failure inside the savepoint (constraint violation, a value the
store refuses) rolls back that record only and is audited as a conflict.
Connectivity errors end the run.

Records are taken in id order, UPSERT_BATCH_SIZE per outer transaction.
A killed run leaves its current batch uncommitted and resumes there.
"""

from __future__ import annotations

import uuid
from datetime import datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import ErrorClass, JobName, settings
from src.engine.identifier import validate_identifier
from src.engine.merge import (
    LOT_FIELDS,
    VEHICLE_FIELDS,
    MergeDecision,
    advance_watermark,
    decide,
    fill_missing,
    incoming_wins,
    lot_fields,
    vehicle_fields,
)
from src.errors import (
    IdentifierValidationError,
    LotlineError,
    MergeConflictError,
    StoreUnavailableError,
    is_connectivity_error,
    record_conflict,
)
from src.models.lot import CanonicalLot
from src.models.snapshot import StagedRecord
from src.models.vehicle import CanonicalVehicle
from src.pipeline.summary import RunSummary, audit_row, record_run
from src.utils.export_row import ExportRow
from src.utils.taxonomy import UnknownLabelCounter
from src.utils.timeutil import ensure_utc, isoformat_or_none, utcnow

logger = structlog.get_logger(__name__)


class CanonicalUpsertEngine:
    """Merges staged records into canonical lot and vehicle state."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        batch_size: int | None = None,
    ):
        self.session_factory = session_factory
        self.batch_size = batch_size or settings.UPSERT_BATCH_SIZE
        self.unknown_labels = UnknownLabelCounter()

    async def run(self, snapshot_id: uuid.UUID | None = None, limit: int | None = None) -> RunSummary:
        """
        Process every record without a processed marker (optionally only
        from one snapshot, at most `limit` records).

        Counts: inserted, updated, skipped, errored (+ errors_by_class).
        """
        summary = RunSummary(job=JobName.UPSERT)
        for key in ("inserted", "updated", "skipped", "errored"):
            summary.count(key, 0)

        last_id = 0
        seen = 0
        try:
            while limit is None or seen < limit:
                size = self.batch_size if limit is None else min(self.batch_size, limit - seen)
                async with self.session_factory() as session:
                    async with session.begin():
                        records = await self._next_batch(session, last_id, size, snapshot_id)
                        for record in records:
                            last_id = record.id
                            await self._process(session, record, summary)
                if not records:
                    break
                seen += len(records)
                logger.debug("upsert_batch_committed", records=len(records), last_id=last_id)
        except LotlineError as exc:
            summary.fail(exc)
            raise
        except (SQLAlchemyError, OSError) as exc:
            if not is_connectivity_error(exc):
                summary.fail(exc)
                raise
            wrapped = StoreUnavailableError(f"store unavailable during upsert: {exc}")
            summary.fail(wrapped)
            raise wrapped from exc
        finally:
            summary.count("unknown_labels", len(self.unknown_labels))
            await record_run(self.session_factory, summary)
        return summary

    async def _next_batch(
        self,
        session: AsyncSession,
        after_id: int,
        size: int,
        snapshot_id: uuid.UUID | None,
    ) -> list[StagedRecord]:
        stmt = (
            select(StagedRecord)
            .where(StagedRecord.processed_at.is_(None), StagedRecord.id > after_id)
            .order_by(StagedRecord.id)
            .limit(size)
        )
        if snapshot_id is not None:
            stmt = stmt.where(StagedRecord.snapshot_id == snapshot_id)
        return list((await session.execute(stmt)).scalars().all())

    # -----------------------------------------------------------------------
    # Per-record processing
    # -----------------------------------------------------------------------

    async def _process(self, session: AsyncSession, record: StagedRecord, summary: RunSummary) -> None:
        # Read before the savepoint: a rollback expires the instance.
        record_id = record.id
        lot_id = record.external_lot_id
        previous_reason = record.rejection_reason
        incoming_ts = ensure_utc(record.source_timestamp)

        try:
            async with session.begin_nested():
                result = await self._merge_record(session, record, incoming_ts)
                await session.flush()
        except IdentifierValidationError as exc:
            # Not marked processed: a corrected identifier in a later pass still merges.
            await self._reject(session, record_id, lot_id, previous_reason, exc)
            summary.error(exc.error_class)
            return
        except (SQLAlchemyError, OverflowError, ValueError) as exc:
            if is_connectivity_error(exc):
                raise
            conflict = record_conflict(exc)
            # Constraint violations are retried; values the store refuses never change.
            await self._reject(
                session, record_id, lot_id, previous_reason, conflict,
                mark_processed=not isinstance(exc, IntegrityError),
                source_timestamp=incoming_ts,
            )
            summary.error(conflict.error_class)
            return

        if isinstance(result, MergeConflictError):
            # Stale lot row: the vehicle fill-missing merge above is already committed.
            await self._reject(
                session, record_id, lot_id, previous_reason, result,
                mark_processed=True,
                source_timestamp=incoming_ts,
            )
            summary.error(result.error_class)
            return
        summary.count(result)

    async def _merge_record(
        self,
        session: AsyncSession,
        record: StagedRecord,
        incoming_ts: datetime | None,
    ) -> str | MergeConflictError:
        """Returns the count bucket (inserted, updated, skipped) or the stale-row conflict."""
        row = ExportRow.from_field_bag(record.field_bag)
        raw_identifier = record.vehicle_identifier_raw or row.vehicle_identifier
        verdict = validate_identifier(raw_identifier)
        verdict.raise_for_rejection(raw_identifier)

        await self._merge_vehicle(session, verdict.canonical, verdict.format.value, raw_identifier, row)

        lot = (
            await session.execute(
                select(CanonicalLot).where(CanonicalLot.external_lot_id == record.external_lot_id)
            )
        ).scalar_one_or_none()
        decision = decide(lot is not None, lot.source_timestamp if lot else None, incoming_ts)
        incoming = lot_fields(row, sink=self.unknown_labels)

        if decision is MergeDecision.INSERT:
            session.add(CanonicalLot(
                external_lot_id=record.external_lot_id,
                vehicle_identifier=verdict.canonical,
                source_timestamp=incoming_ts,
                relist_count=0,
                **incoming,
            ))
            bucket = "inserted"
        elif decision is MergeDecision.UPDATE:
            current = {name: getattr(lot, name) for name in LOT_FIELDS}
            for name, value in incoming_wins(current, incoming).items():
                setattr(lot, name, value)
            if lot.vehicle_identifier != verdict.canonical:
                lot.vehicle_identifier = verdict.canonical
            lot.source_timestamp = advance_watermark(lot.source_timestamp, incoming_ts)
            bucket = "updated"
        elif decision is MergeDecision.STALE:
            return MergeConflictError(
                MergeDecision.STALE.value,
                incoming_source_timestamp=isoformat_or_none(incoming_ts),
                canonical_source_timestamp=isoformat_or_none(lot.source_timestamp),
            )
        else:
            # UNCHANGED (replay) or MISSING_TIMESTAMP: nothing to merge.
            if decision is MergeDecision.MISSING_TIMESTAMP:
                session.add(audit_row(
                    JobName.UPSERT,
                    ErrorClass.CONFLICT,
                    decision.value,
                    staged_record_id=record.id,
                    external_lot_id=record.external_lot_id,
                ))
                logger.info("upsert_record_skipped", record_id=record.id, reason=decision.value)
            bucket = "skipped"

        record.processed_at = utcnow()
        record.processed_source_timestamp = incoming_ts
        record.rejection_reason = None
        return bucket

    async def _merge_vehicle(
        self,
        session: AsyncSession,
        canonical: str,
        identifier_format: str,
        raw_identifier: str,
        row: ExportRow,
    ) -> None:
        incoming = vehicle_fields(row)
        vehicle = await session.get(CanonicalVehicle, canonical)
        if vehicle is None:
            session.add(CanonicalVehicle(
                canonical_identifier=canonical,
                identifier_format=identifier_format,
                raw_identifier=raw_identifier.strip(),
                **incoming,
            ))
            return
        current = {name: getattr(vehicle, name) for name in VEHICLE_FIELDS}
        for name, value in fill_missing(current, incoming).items():
            setattr(vehicle, name, value)

    async def _reject(
        self,
        session: AsyncSession,
        record_id: int,
        external_lot_id: str | None,
        previous_reason: str | None,
        exc: LotlineError,
        mark_processed: bool = False,
        source_timestamp: datetime | None = None,
    ) -> None:
        """
        Record a per-record failure in the outer transaction. The audit row
        is written once per distinct reason, so retried rejections stay quiet.
        """
        values: dict = {"rejection_reason": exc.reason}
        if mark_processed:
            values["processed_at"] = utcnow()
            values["processed_source_timestamp"] = source_timestamp
        await session.execute(update(StagedRecord).where(StagedRecord.id == record_id).values(**values))

        if exc.reason != previous_reason:
            session.add(audit_row(
                JobName.UPSERT,
                exc.error_class,
                exc.reason,
                staged_record_id=record_id,
                external_lot_id=external_lot_id,
                constraint_name=getattr(exc, "constraint_name", None),
                detail=exc.context or None,
            ))
            await session.flush()

        logger.warning(
            "upsert_record_rejected",
            record_id=record_id,
            external_lot_id=external_lot_id,
            error_class=exc.error_class.value,
            reason=exc.reason,
        )
