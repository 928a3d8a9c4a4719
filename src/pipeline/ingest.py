"""
Lotline — Snapshot Ingestion

Registers a finished CSV export as a Snapshot plus one StagedRecord per row.
The fetcher that produces the exports is external; it drops files into
SNAPSHOT_INBOX_DIR and the scheduler picks them up from there.

Idempotent by content: the sha256 of the file is the snapshot fingerprint,
so ingesting the same export twice returns the existing snapshot.
Rows without a lot number are staged as rejected, never dropped.
"""

from __future__ import annotations

import csv
import hashlib
import io
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import NamedTuple

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import ErrorClass, JobName
from src.errors import SnapshotIntegrityError
from src.models.snapshot import Snapshot, StagedRecord
from src.pipeline.summary import RunSummary, audit_row, record_run
from src.store.snapshots import SnapshotStore
from src.utils.export_row import ExportRow
from src.utils.timeutil import ensure_utc, utcnow

logger = structlog.get_logger(__name__)

MISSING_LOT_ID = "missing_external_lot_id"


class IngestResult(NamedTuple):
    snapshot_id: uuid.UUID
    created: bool
    rows: int
    rejected: int


def fingerprint(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def parse_export(content: bytes) -> tuple[list[str], list[dict[str, str]]]:
    """Header list and rows (header → cell) of a CSV export."""
    text = content.decode("utf-8-sig")
    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        raise SnapshotIntegrityError("empty_export")
    headers = [h.strip() for h in reader.fieldnames]
    rows = []
    for raw in reader:
        rows.append({
            header: (value or "").strip()
            for header, value in zip(headers, (raw.get(h) for h in reader.fieldnames))
        })
    return headers, rows


class SnapshotIngestor:
    """Turns export files into snapshots + staged records."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def ingest_file(self, path: str | Path, captured_at: datetime | None = None) -> IngestResult:
        """
        Register one export. `captured_at` defaults to the file's mtime.
        """
        path = Path(path)
        summary = RunSummary(job=JobName.INGEST)
        try:
            content = path.read_bytes()
            digest = fingerprint(content)
            if captured_at is None:
                captured_at = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)

            async with self.session_factory() as session:
                async with session.begin():
                    store = SnapshotStore(session)
                    existing = await store.find_by_fingerprint(digest)
                    if existing is not None:
                        summary.count("duplicates")
                        logger.info("snapshot_already_ingested", path=str(path), snapshot_id=str(existing.id))
                        return IngestResult(existing.id, False, existing.row_count, 0)

                    headers, rows = parse_export(content)
                    records, rejected = self._stage(rows)
                    snapshot = await store.register(
                        Snapshot(
                            captured_at=ensure_utc(captured_at),
                            row_count=len(rows),
                            content_fingerprint=digest,
                            source_path=str(path),
                            headers=headers,
                        ),
                        records,
                    )
                    for record in rejected:
                        session.add(audit_row(
                            JobName.INGEST,
                            ErrorClass.VALIDATION,
                            MISSING_LOT_ID,
                            staged_record_id=record.id,
                            detail={"row_number": record.row_number},
                        ))
                    summary.count("rows", len(rows))
                    summary.count("rejected", len(rejected))
                    if rejected:
                        summary.error(ErrorClass.VALIDATION, len(rejected))

            logger.info(
                "snapshot_ingested",
                path=str(path),
                snapshot_id=str(snapshot.id),
                rows=len(rows),
                rejected=len(rejected),
            )
            return IngestResult(snapshot.id, True, len(rows), len(rejected))
        except Exception as exc:
            summary.fail(exc)
            raise
        finally:
            await record_run(self.session_factory, summary)

    async def ingest_inbox(self, directory: str | Path) -> list[IngestResult]:
        """Ingest every *.csv in a directory, oldest first. A bad file never blocks the rest."""
        files = sorted(Path(directory).glob("*.csv"), key=lambda p: (p.stat().st_mtime, p.name))
        results = []
        for path in files:
            try:
                results.append(await self.ingest_file(path))
            except Exception as exc:
                logger.error("snapshot_ingest_failed", path=str(path), error=str(exc))
        return results

    @staticmethod
    def _stage(rows: list[dict[str, str]]) -> tuple[list[StagedRecord], list[StagedRecord]]:
        now = utcnow()
        records: list[StagedRecord] = []
        rejected: list[StagedRecord] = []
        for number, bag in enumerate(rows, start=1):
            row = ExportRow.from_field_bag(bag)
            record = StagedRecord(
                row_number=number,
                external_lot_id=row.external_lot_id,
                vehicle_identifier_raw=row.vehicle_identifier,
                field_bag=bag,
                source_timestamp=row.source_timestamp,
            )
            if row.external_lot_id is None:
                record.rejection_reason = MISSING_LOT_ID
                record.processed_at = now
                rejected.append(record)
            records.append(record)
        return records, rejected
