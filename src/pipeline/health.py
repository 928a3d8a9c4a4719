"""
Lotline — Job Health

Latest BatchRun per job, for an external health endpoint or the CLI.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import JobName
from src.models.audit import BatchRun
from src.pipeline.summary import RunStatus
from src.utils.timeutil import isoformat_or_none


async def latest_runs(session: AsyncSession) -> dict[str, dict[str, Any] | None]:
    """job name → summary of its most recent run (None if it never ran)."""
    newest = (
        select(BatchRun.job, func.max(BatchRun.id).label("run_id"))
        .group_by(BatchRun.job)
        .subquery()
    )
    stmt = select(BatchRun).join(newest, BatchRun.id == newest.c.run_id)
    runs = {run.job: run for run in (await session.execute(stmt)).scalars().all()}

    report: dict[str, dict[str, Any] | None] = {}
    for job in JobName:
        run = runs.get(job.value)
        report[job.value] = None if run is None else {
            "status": run.status,
            "started_at": isoformat_or_none(run.started_at),
            "finished_at": isoformat_or_none(run.finished_at),
            "execution_ms": run.execution_ms,
            "counts": run.counts,
            "errors_by_class": run.errors_by_class,
            "error_message": run.error_message,
        }
    return report


def is_healthy(report: dict[str, dict[str, Any] | None]) -> bool:
    """Healthy when no job's latest run failed."""
    return all(run is None or run["status"] != RunStatus.FAILED for run in report.values())
