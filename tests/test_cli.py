"""Tests for the command line and the job health report."""

from __future__ import annotations

import uuid

import pytest

from src.cli import _render, build_parser, dispatch
from src.config import JobName
from src.errors import SnapshotIntegrityError
from src.pipeline.health import is_healthy, latest_runs
from src.pipeline.summary import RunSummary
from tests.conftest import VIN_B, make_export_row


def test_parser_resolve_options() -> None:
    args = build_parser().parse_args(["resolve", "--dry-run", "--lot-id", "12345", "--grace-hours", "48"])

    assert args.command == "resolve"
    assert args.dry_run is True
    assert args.lot_id == "12345"
    assert args.grace_hours == 48.0
    assert args.on_approval_days is None


def test_parser_diff_pair() -> None:
    previous, current = uuid.uuid4(), uuid.uuid4()

    args = build_parser().parse_args(["diff", "--previous", str(previous), "--current", str(current)])

    assert args.previous == previous
    assert args.current == current
    assert args.dry_run is False


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_render_summary() -> None:
    summary = RunSummary(job=JobName.UPSERT)
    summary.count("inserted", 2)

    rendered = _render({"upsert": summary})

    assert rendered["upsert"]["job"] == "upsert"
    assert rendered["upsert"]["counts"] == {"inserted": 2}


@pytest.mark.asyncio
async def test_dispatch_ingest_then_upsert(session_factory, write_export):
    path = write_export("export.csv", [make_export_row("12345"), make_export_row("22222", vin=VIN_B)])
    parser = build_parser()

    code, results = await dispatch(parser.parse_args(["ingest", str(path)]), session_factory)
    assert code == 0
    assert results[0].rows == 2

    code, summary = await dispatch(parser.parse_args(["upsert"]), session_factory)
    assert code == 0
    assert summary.counts["inserted"] == 2


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_health_before_any_run(session_factory):
    async with session_factory() as session:
        report = await latest_runs(session)

    assert set(report) == {job.value for job in JobName}
    assert all(run is None for run in report.values())
    assert is_healthy(report)


@pytest.mark.asyncio
async def test_health_reflects_latest_failed_run(session_factory):
    parser = build_parser()
    with pytest.raises(SnapshotIntegrityError):
        await dispatch(parser.parse_args(["diff"]), session_factory)

    code, report = await dispatch(parser.parse_args(["health"]), session_factory)

    assert code == 1
    assert report["diff"]["status"] == "failed"
    assert report["diff"]["errors_by_class"] == {"integrity": 1}
    assert report["upsert"] is None


@pytest.mark.asyncio
async def test_health_recovers_after_success(session_factory, seed_snapshot):
    parser = build_parser()
    with pytest.raises(SnapshotIntegrityError):
        await dispatch(parser.parse_args(["diff"]), session_factory)

    await seed_snapshot([make_export_row("1")])
    await seed_snapshot([make_export_row("2")])
    await dispatch(parser.parse_args(["diff"]), session_factory)

    code, report = await dispatch(parser.parse_args(["health"]), session_factory)

    assert code == 0
    assert report["diff"]["status"] == "success"
