"""
Lotline — Run Summaries

Every job run ends with a RunSummary: counts, per-error-class breakdown,
execution time. record_run() persists it as a BatchRun row and emits the
structured `<job>_run_completed` log line monitoring keys off.
"""

from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import ErrorClass, JobName
from src.models.audit import BatchRun, ProcessingAudit
from src.utils.timeutil import utcnow

logger = structlog.get_logger(__name__)


class RunStatus:
    SUCCESS = "success"
    PARTIAL = "partial"      # finished, but some records errored
    FAILED = "failed"
    DRY_RUN = "dry_run"


@dataclass
class RunSummary:
    job: JobName
    dry_run: bool = False
    counts: Counter = field(default_factory=Counter)
    errors_by_class: Counter = field(default_factory=Counter)
    error_message: str | None = None
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None
    _t0: float = field(default_factory=time.monotonic, repr=False)
    _elapsed_ms: int | None = field(default=None, repr=False)

    def count(self, key: str, n: int = 1) -> None:
        self.counts[key] += n

    def error(self, error_class: ErrorClass, n: int = 1) -> None:
        self.errors_by_class[error_class.value] += n
        self.counts["errored"] += n

    def fail(self, exc: BaseException) -> None:
        error_class = getattr(exc, "error_class", ErrorClass.TRANSIENT)
        self.errors_by_class[ErrorClass(error_class).value] += 1
        self.error_message = str(exc)

    def finish(self) -> "RunSummary":
        """Stop the clock. Idempotent."""
        if self.finished_at is None:
            self.finished_at = utcnow()
            self._elapsed_ms = int((time.monotonic() - self._t0) * 1000)
        return self

    @property
    def execution_ms(self) -> int:
        if self._elapsed_ms is None:
            return int((time.monotonic() - self._t0) * 1000)
        return self._elapsed_ms

    @property
    def status(self) -> str:
        if self.error_message is not None:
            return RunStatus.FAILED
        if self.dry_run:
            return RunStatus.DRY_RUN
        if self.counts.get("errored"):
            return RunStatus.PARTIAL
        return RunStatus.SUCCESS

    def as_dict(self) -> dict[str, Any]:
        return {
            "job": self.job.value,
            "status": self.status,
            "counts": dict(self.counts),
            "errors_by_class": dict(self.errors_by_class),
            "execution_ms": self.execution_ms,
            "error_message": self.error_message,
        }


def audit_row(
    job: JobName,
    error_class: ErrorClass,
    reason: str,
    staged_record_id: int | None = None,
    external_lot_id: str | None = None,
    constraint_name: str | None = None,
    detail: dict[str, Any] | None = None,
) -> ProcessingAudit:
    return ProcessingAudit(
        job=job.value,
        error_class=error_class.value,
        reason=reason,
        staged_record_id=staged_record_id,
        external_lot_id=external_lot_id,
        constraint_name=constraint_name,
        detail=detail,
    )


async def record_run(
    session_factory: async_sessionmaker[AsyncSession],
    summary: RunSummary,
) -> RunSummary:
    """
    Persist the BatchRun row and log the completion line.

    Uses its own session so a failed job's rollback never loses the record
    of the failure. A store outage here is logged, not raised.
    """
    summary.finish()
    data = summary.as_dict()

    log = logger.error if summary.status == RunStatus.FAILED else logger.info
    log(f"{summary.job.value}_run_completed", **data)

    try:
        async with session_factory() as session:
            session.add(BatchRun(
                job=summary.job.value,
                status=summary.status,
                started_at=summary.started_at,
                finished_at=summary.finished_at,
                execution_ms=summary.execution_ms,
                counts=data["counts"],
                errors_by_class=data["errors_by_class"],
                error_message=summary.error_message,
            ))
            await session.commit()
    except Exception as exc:
        logger.error("batch_run_record_failed", job=summary.job.value, error=str(exc))
    return summary
