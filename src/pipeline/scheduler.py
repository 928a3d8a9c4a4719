"""
Lotline — Lifecycle Scheduler

Runs the lifecycle jobs on configurable cadences.

Cadences:
- Cycle (default hourly): ingest inbox → diff → upsert → resolve
- Retention (default daily): purge expired snapshots + staged rows

Jobs are independent: a failing diff never stops the upsert, and a failing
cycle never stops the scheduler. Failed jobs are retried at the next cycle.
"""

from __future__ import annotations

import asyncio
import signal
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import JobName, settings
from src.errors import SnapshotIntegrityError
from src.pipeline.diff_job import SnapshotDiffEngine
from src.pipeline.ingest import SnapshotIngestor
from src.pipeline.resolver_job import OutcomeResolver
from src.pipeline.summary import RunSummary, record_run
from src.pipeline.upsert_job import CanonicalUpsertEngine
from src.store.snapshots import SnapshotStore

logger = structlog.get_logger(__name__)


async def _stage(results: dict[str, Any], job: JobName, call: Callable[[], Awaitable[Any]]) -> None:
    """Run one cycle stage, recording its result or failure under the job name."""
    try:
        results[job.value] = await call()
    except SnapshotIntegrityError as e:
        # Expected until a second snapshot exists.
        logger.info(f"cycle_{job.value}_skipped", reason=e.reason)
        results[job.value] = e.reason
    except Exception as e:
        logger.error(f"cycle_{job.value}_failed", error=str(e), error_type=type(e).__name__)
        results[job.value] = str(e)


async def run_cycle(
    session_factory: async_sessionmaker[AsyncSession],
    inbox_dir: str | None = None,
) -> dict[str, Any]:
    """
    One full lifecycle cycle. Each stage runs even if an earlier one failed.

    Returns stage name → RunSummary (or the ingest results / error string).
    """
    results: dict[str, Any] = {}
    if inbox_dir:
        await _stage(results, JobName.INGEST, lambda: SnapshotIngestor(session_factory).ingest_inbox(inbox_dir))
    await _stage(results, JobName.DIFF, lambda: SnapshotDiffEngine(session_factory).run())
    await _stage(results, JobName.UPSERT, lambda: CanonicalUpsertEngine(session_factory).run())
    await _stage(results, JobName.RESOLVE, lambda: OutcomeResolver(session_factory).run())
    return results


async def run_retention(
    session_factory: async_sessionmaker[AsyncSession],
    retention_days: int | None = None,
) -> RunSummary:
    """Purge snapshots outside the retention window."""
    summary = RunSummary(job=JobName.RETENTION)
    try:
        async with session_factory() as session:
            async with session.begin():
                purged = await SnapshotStore(session).purge_expired(
                    retention_days if retention_days is not None else settings.STAGING_RETENTION_DAYS
                )
        summary.count("snapshots_purged", purged)
    except Exception as exc:
        summary.fail(exc)
        raise
    finally:
        await record_run(session_factory, summary)
    return summary


class Scheduler:
    """
    Async scheduler for the lifecycle jobs.

    Keeps independent clocks for the cycle and retention cadences. Both run
    once at startup, then on their cadence.
    """

    CHECK_INTERVAL_SECONDS = 5

    def __init__(
        self,
        db_engine: Any,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self.db_engine = db_engine
        self.session_factory = session_factory
        self._shutdown_event = asyncio.Event()

        self._cycle_last_run: datetime | None = None
        self._cycle_cadence_minutes = settings.CYCLE_INTERVAL_MINUTES

        self._retention_last_run: datetime | None = None
        self._retention_cadence_minutes = settings.RETENTION_INTERVAL_HOURS * 60

    async def shutdown(self) -> None:
        """Signal graceful shutdown to the scheduler loop."""
        self.request_shutdown("api")

    def request_shutdown(self, source: str) -> None:
        logger.info("scheduler_shutdown_requested", source=source)
        self._shutdown_event.set()

    @staticmethod
    def _elapsed(last_run: datetime | None, cadence_minutes: float) -> bool:
        if last_run is None:
            return True
        elapsed_minutes = (datetime.now(timezone.utc) - last_run).total_seconds() / 60
        return elapsed_minutes >= cadence_minutes

    def _should_run_cycle(self) -> bool:
        return self._elapsed(self._cycle_last_run, self._cycle_cadence_minutes)

    def _should_run_retention(self) -> bool:
        return self._elapsed(self._retention_last_run, self._retention_cadence_minutes)

    async def _run_cycle(self) -> dict[str, Any]:
        logger.info("scheduler_cycle_start")
        results = await run_cycle(self.session_factory, settings.SNAPSHOT_INBOX_DIR or None)
        self._cycle_last_run = datetime.now(timezone.utc)
        logger.info(
            "scheduler_cycle_complete",
            stages=sorted(results),
            next_cycle_in_minutes=self._cycle_cadence_minutes,
        )
        return results

    async def _run_retention(self) -> None:
        logger.info("scheduler_retention_start")
        try:
            await run_retention(self.session_factory)
        finally:
            self._retention_last_run = datetime.now(timezone.utc)

    async def _tick(self) -> None:
        """Run whatever is due."""
        if self._should_run_cycle():
            await self._run_cycle()
        if self._should_run_retention():
            await self._run_retention()

    async def run(self) -> None:
        """
        Main scheduler loop. Runs until shutdown is signaled, waking every
        CHECK_INTERVAL_SECONDS to see whether a cadence has elapsed.
        """
        logger.info(
            "scheduler_started",
            cycle_cadence_minutes=self._cycle_cadence_minutes,
            retention_cadence_hours=settings.RETENTION_INTERVAL_HOURS,
            inbox_dir=settings.SNAPSHOT_INBOX_DIR or None,
        )
        try:
            while not self._shutdown_event.is_set():
                try:
                    await self._tick()
                except Exception as e:
                    # run_retention re-raises after recording its BatchRun.
                    logger.error("scheduler_job_error", error=str(e), error_type=type(e).__name__)
                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.CHECK_INTERVAL_SECONDS)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            logger.info("scheduler_cancelled")
            raise
        finally:
            logger.info("scheduler_stopped")


async def run_scheduler(db_engine: Any, session_factory: async_sessionmaker[AsyncSession]) -> None:
    """
    Run the scheduler until SIGTERM/SIGINT.

    The current cycle finishes before the loop exits; uncommitted batches of
    an interrupted job are picked up by the next run.
    """
    scheduler = Scheduler(db_engine, session_factory)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, scheduler.request_shutdown, sig.name)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            logger.warning("signal_handler_unsupported", signal=sig.name)

    await scheduler.run()
