"""
Tests for the snapshot diff job.

Validates pair resolution, integrity failures, dry runs, and that
re-running a pair appends nothing.
"""

from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from src.config import JobName
from src.errors import SnapshotIntegrityError
from src.models.audit import BatchRun
from src.models.event import AuctionEvent
from src.pipeline.diff_job import SnapshotDiffEngine
from src.pipeline.summary import RunStatus
from src.utils.timeutil import ensure_utc
from tests.conftest import VIN_A, VIN_B, make_export_row


async def _events(session_factory) -> list[AuctionEvent]:
    async with session_factory() as session:
        stmt = select(AuctionEvent).order_by(AuctionEvent.id)
        return list((await session.execute(stmt)).scalars().all())


async def _runs(session_factory) -> list[BatchRun]:
    async with session_factory() as session:
        return list((await session.execute(select(BatchRun).order_by(BatchRun.id))).scalars().all())


@pytest.fixture
async def snapshot_pair(seed_snapshot):
    previous = await seed_snapshot([
        make_export_row("12345", vin=VIN_A),
        make_export_row("22222", vin=VIN_B, bid="800"),
    ])
    current = await seed_snapshot([
        make_export_row("67890", vin=VIN_A),
        make_export_row("22222", vin=VIN_B, bid="950"),
    ])
    return previous, current


@pytest.mark.asyncio
async def test_diff_latest_pair(session_factory, snapshot_pair, base_time):
    previous, current = snapshot_pair
    now = base_time + timedelta(hours=2)

    summary = await SnapshotDiffEngine(session_factory).run(now=now)

    assert summary.status == RunStatus.SUCCESS
    assert summary.counts["appeared_lots"] == 1
    assert summary.counts["disappeared_lots"] == 1
    assert summary.counts["common_lots"] == 1
    assert summary.counts["relisted"] == 1
    assert summary.counts["price_changed"] == 1
    assert summary.counts["events_inserted"] == 5

    events = await _events(session_factory)
    assert [(e.event_type, e.external_lot_id) for e in events] == [
        ("appeared", "67890"),
        ("disappeared", "12345"),
        ("price_changed", "22222"),
        ("updated", "22222"),
        ("relisted", "12345"),
    ]
    assert all(e.snapshot_id == current and e.previous_snapshot_id == previous for e in events)
    assert all(ensure_utc(e.created_at) == now for e in events)


@pytest.mark.asyncio
async def test_rerunning_a_pair_adds_nothing(session_factory, snapshot_pair):
    engine = SnapshotDiffEngine(session_factory)

    await engine.run()
    again = await engine.run()

    assert again.counts["events_inserted"] == 0
    assert again.counts["events_skipped"] == 5
    assert len(await _events(session_factory)) == 5


@pytest.mark.asyncio
async def test_explicit_pair(session_factory, snapshot_pair):
    previous, current = snapshot_pair

    summary = await SnapshotDiffEngine(session_factory).run(
        previous_snapshot_id=previous, current_snapshot_id=current
    )

    assert summary.counts["events_inserted"] == 5


@pytest.mark.asyncio
async def test_dry_run_writes_no_events(session_factory, snapshot_pair):
    summary = await SnapshotDiffEngine(session_factory).run(dry_run=True)

    assert summary.status == RunStatus.DRY_RUN
    assert summary.counts["appeared"] == 1
    assert "events_inserted" not in summary.counts
    assert await _events(session_factory) == []


@pytest.mark.asyncio
async def test_run_is_recorded(session_factory, snapshot_pair):
    await SnapshotDiffEngine(session_factory).run()

    (run,) = await _runs(session_factory)
    assert run.job == JobName.DIFF.value
    assert run.status == RunStatus.SUCCESS
    assert run.counts["events_inserted"] == 5
    assert run.execution_ms >= 0


# ---------------------------------------------------------------------------
# Integrity failures
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_single_snapshot_is_an_integrity_error(session_factory, seed_snapshot):
    await seed_snapshot([make_export_row("1")])

    with pytest.raises(SnapshotIntegrityError) as exc_info:
        await SnapshotDiffEngine(session_factory).run()

    assert exc_info.value.reason == "need_two_snapshots"
    (run,) = await _runs(session_factory)
    assert run.status == RunStatus.FAILED
    assert run.errors_by_class == {"integrity": 1}


@pytest.mark.asyncio
async def test_identical_pair_is_rejected(session_factory, snapshot_pair):
    _, current = snapshot_pair

    with pytest.raises(SnapshotIntegrityError) as exc_info:
        await SnapshotDiffEngine(session_factory).run(previous_snapshot_id=current, current_snapshot_id=current)

    assert exc_info.value.reason == "identical_snapshot_pair"


@pytest.mark.asyncio
async def test_half_a_pair_is_rejected(session_factory, snapshot_pair):
    _, current = snapshot_pair

    with pytest.raises(SnapshotIntegrityError) as exc_info:
        await SnapshotDiffEngine(session_factory).run(current_snapshot_id=current)

    assert exc_info.value.reason == "incomplete_snapshot_pair"


@pytest.mark.asyncio
async def test_unknown_snapshot_is_rejected(session_factory, snapshot_pair):
    previous, _ = snapshot_pair

    with pytest.raises(SnapshotIntegrityError) as exc_info:
        await SnapshotDiffEngine(session_factory).run(previous_snapshot_id=previous, current_snapshot_id=uuid.uuid4())

    assert exc_info.value.reason == "snapshot_not_found"


@pytest.mark.asyncio
async def test_reversed_pair_is_rejected(session_factory, snapshot_pair):
    previous, current = snapshot_pair

    with pytest.raises(SnapshotIntegrityError) as exc_info:
        await SnapshotDiffEngine(session_factory).run(previous_snapshot_id=current, current_snapshot_id=previous)

    assert exc_info.value.reason == "snapshot_pair_out_of_order"
    assert await _events(session_factory) == []


@pytest.mark.asyncio
async def test_empty_current_snapshot_disappears_everything(session_factory, seed_snapshot):
    await seed_snapshot([make_export_row("1"), make_export_row("2", vin=VIN_B)])
    await seed_snapshot([])

    summary = await SnapshotDiffEngine(session_factory).run()

    assert summary.counts["disappeared"] == 2
    assert summary.counts["relisted"] == 0
