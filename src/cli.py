"""
Lotline — Command Line

Runs single lifecycle jobs on demand (backfills, debugging, cron).

Usage:
    python -m src.cli ingest exports/2025-10-20.csv
    python -m src.cli diff --dry-run
    python -m src.cli diff --previous <uuid> --current <uuid>
    python -m src.cli upsert --limit 1000
    python -m src.cli resolve --grace-hours 48 --dry-run
    python -m src.cli resolve --lot-id 12345
    python -m src.cli cycle --inbox exports/
    python -m src.cli purge --retention-days 30
    python -m src.cli health
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import uuid
from typing import Any, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import settings
from src.errors import LotlineError
from src.main import configure_logging, create_db_engine
from src.pipeline.diff_job import SnapshotDiffEngine
from src.pipeline.health import is_healthy, latest_runs
from src.pipeline.ingest import SnapshotIngestor
from src.pipeline.resolver_job import OutcomeResolver
from src.pipeline.scheduler import run_cycle, run_retention
from src.pipeline.summary import RunSummary
from src.pipeline.upsert_job import CanonicalUpsertEngine

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lotline",
        description="Auction-attempt lifecycle jobs.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL.")
    parser.add_argument("--log-level", default=settings.LOG_LEVEL, help="DEBUG, INFO, WARNING, ERROR.")
    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Register CSV exports as snapshots.")
    ingest.add_argument("paths", nargs="+", help="Export files to ingest, oldest first.")

    diff = sub.add_parser("diff", help="Diff a snapshot pair and append events.")
    diff.add_argument("--previous", type=uuid.UUID, default=None, help="Previous snapshot id.")
    diff.add_argument("--current", type=uuid.UUID, default=None, help="Current snapshot id.")
    diff.add_argument("--dry-run", action="store_true", help="Compute events without writing.")

    upsert = sub.add_parser("upsert", help="Merge staged records into canonical lots/vehicles.")
    upsert.add_argument("--snapshot", type=uuid.UUID, default=None, help="Only records of this snapshot.")
    upsert.add_argument("--limit", type=int, default=None, help="Process at most N records.")

    resolve = sub.add_parser("resolve", help="Infer outcomes for open lots.")
    resolve.add_argument("--dry-run", action="store_true", help="Report verdicts without writing.")
    resolve.add_argument("--lot-id", default=None, help="Resolve a single external lot id.")
    resolve.add_argument(
        "--grace-hours", type=float, default=None,
        help=f"Hours after auction before a disappearance counts (default: {settings.DISAPPEARANCE_GRACE_HOURS:g}).",
    )
    resolve.add_argument(
        "--on-approval-days", type=float, default=None,
        help=f"No-relist window for reserve lots (default: {settings.ON_APPROVAL_WAIT_DAYS:g}).",
    )

    cycle = sub.add_parser("cycle", help="Run ingest → diff → upsert → resolve once.")
    cycle.add_argument("--inbox", default=settings.SNAPSHOT_INBOX_DIR or None, help="Export inbox directory.")

    purge = sub.add_parser("purge", help="Delete snapshots outside the retention window.")
    purge.add_argument("--retention-days", type=int, default=settings.STAGING_RETENTION_DAYS)

    sub.add_parser("health", help="Show the latest run of each job.")
    return parser


def _render(value: Any) -> Any:
    if isinstance(value, RunSummary):
        return value.as_dict()
    if isinstance(value, dict):
        return {k: _render(v) for k, v in value.items()}
    if hasattr(value, "_asdict"):
        return _render(value._asdict())
    if isinstance(value, (list, tuple)):
        return [_render(v) for v in value]
    return value


async def dispatch(args: argparse.Namespace, session_factory: async_sessionmaker[AsyncSession]) -> tuple[int, Any]:
    """Run the selected command. Returns (exit code, printable result)."""
    if args.command == "ingest":
        ingestor = SnapshotIngestor(session_factory)
        return 0, [await ingestor.ingest_file(path) for path in args.paths]

    if args.command == "diff":
        summary = await SnapshotDiffEngine(session_factory).run(
            previous_snapshot_id=args.previous,
            current_snapshot_id=args.current,
            dry_run=args.dry_run,
        )
        return 0, summary

    if args.command == "upsert":
        summary = await CanonicalUpsertEngine(session_factory).run(snapshot_id=args.snapshot, limit=args.limit)
        return 0, summary

    if args.command == "resolve":
        summary = await OutcomeResolver(session_factory).run(
            dry_run=args.dry_run,
            lot_id=args.lot_id,
            grace_hours=args.grace_hours,
            on_approval_days=args.on_approval_days,
        )
        return 0, summary

    if args.command == "cycle":
        return 0, await run_cycle(session_factory, args.inbox)

    if args.command == "purge":
        return 0, await run_retention(session_factory, args.retention_days)

    if args.command == "health":
        async with session_factory() as session:
            report = await latest_runs(session)
        return (0 if is_healthy(report) else 1), report

    raise ValueError(f"unknown command: {args.command}")


async def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    engine, session_factory = await create_db_engine(args.database_url)
    try:
        code, result = await dispatch(args, session_factory)
    except LotlineError as e:
        print(f"{args.command} failed ({e.error_class.value}): {e.reason}", file=sys.stderr)
        return 2
    finally:
        await engine.dispose()

    print(json.dumps(_render(result), indent=2, default=str))
    return code


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
