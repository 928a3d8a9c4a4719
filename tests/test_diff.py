"""Tests for the pure snapshot diff."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from src.config import EventType
from src.engine.diff import SnapshotRow, diff_snapshots, index_rows, vehicle_index
from tests.conftest import VIN_A, VIN_B, make_export_row


def _row(record_id: int, lot: str, **kwargs) -> SnapshotRow:
    bag = make_export_row(lot, **kwargs)
    return SnapshotRow.from_field_bag(record_id, lot, bag)


def _types(result) -> list[str]:
    return [e.event_type.value for e in result.events]


# ---------------------------------------------------------------------------
# Indexing
# ---------------------------------------------------------------------------


def test_duplicate_lot_keeps_newest_source_timestamp() -> None:
    older = _row(1, "100", bid="100", updated="2025-10-20T09:00:00Z")
    newer = _row(2, "100", bid="200", updated="2025-10-20T11:00:00Z")

    index = index_rows([newer, older])

    assert index["100"].bid == Decimal("200")


def test_duplicate_lot_same_timestamp_keeps_highest_record_id() -> None:
    first = _row(1, "100", bid="100")
    second = _row(2, "100", bid="200")

    assert index_rows([second, first])["100"].record_id == 2


def test_vehicle_index_skips_blank_identifiers() -> None:
    rows = index_rows([_row(1, "1", vin=VIN_A), _row(2, "2", vin=""), _row(3, "3", vin=VIN_A)])

    assert vehicle_index(rows) == {VIN_A: ["1", "3"]}


def test_snapshot_row_canonicalizes_identifier() -> None:
    row = _row(1, "1", vin=" 1ftew1eg7gfa12345 ")

    assert row.vehicle_identifier == VIN_A
    assert row.source_timestamp == datetime(2025, 10, 20, 10, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Partition
# ---------------------------------------------------------------------------


def test_appeared_disappeared_common_partition_the_union() -> None:
    previous = index_rows([_row(1, "A", vin=None), _row(2, "B", vin=None)])
    current = index_rows([_row(3, "B", vin=None), _row(4, "C", vin=None)])

    result = diff_snapshots(previous, current)

    assert result.appeared == ["C"]
    assert result.disappeared == ["A"]
    assert result.common == ["B"]
    assert set(result.appeared) | set(result.disappeared) | set(result.common) == {"A", "B", "C"}
    assert _types(result) == ["appeared", "disappeared"]


def test_identical_snapshots_produce_no_events() -> None:
    rows = index_rows([_row(1, "A"), _row(2, "B", vin=VIN_B)])

    result = diff_snapshots(rows, rows)

    assert result.events == []
    assert result.common == ["A", "B"]


def test_empty_previous_everything_appears() -> None:
    current = index_rows([_row(1, "A"), _row(2, "B", vin=VIN_B)])

    result = diff_snapshots({}, current)

    assert result.appeared == ["A", "B"]
    assert result.counts()["appeared"] == 2
    assert result.counts()["disappeared"] == 0


def test_disappeared_payload_carries_last_seen_state() -> None:
    previous = index_rows([_row(1, "A", bid="900")])

    result = diff_snapshots(previous, {})

    (event,) = result.events
    assert event.event_type == EventType.DISAPPEARED
    assert event.payload["last_seen"]["bid"] == "900"
    assert event.payload["last_seen"]["status"] == "status_active"


# ---------------------------------------------------------------------------
# Field changes
# ---------------------------------------------------------------------------


def test_price_change_emits_field_and_summary_events() -> None:
    previous = index_rows([_row(1, "A", bid="1000")])
    current = index_rows([_row(2, "A", bid="1250")])

    result = diff_snapshots(previous, current)

    assert _types(result) == ["price_changed", "updated"]
    price, summary = result.events
    assert price.payload == {"field": "bid", "before": "1000", "after": "1250"}
    assert summary.payload["changed_fields"] == ["bid"]


def test_unparseable_bid_is_not_a_price_change() -> None:
    previous = index_rows([_row(1, "A", bid="1000")])
    current = index_rows([_row(2, "A", bid="N/A")])

    assert diff_snapshots(previous, current).events == []


def test_date_and_status_changes() -> None:
    previous = index_rows([_row(1, "A", sale_date="102025", status="Future Sale")])
    current = index_rows([_row(2, "A", sale_date="102725", status="Pure Sale")])

    result = diff_snapshots(previous, current)

    assert _types(result) == ["date_changed", "status_changed", "updated"]
    assert result.events[0].payload["after"] == "2025-10-27T14:00:00+00:00"
    assert result.events[1].payload == {
        "field": "status", "before": "status_scheduled", "after": "status_active",
    }


# ---------------------------------------------------------------------------
# Relists
# ---------------------------------------------------------------------------


def test_relist_detected_when_vehicle_moves_to_new_lot() -> None:
    previous = index_rows([_row(1, "12345", vin=VIN_A)])
    current = index_rows([_row(2, "67890", vin=VIN_A)])

    result = diff_snapshots(previous, current)

    assert _types(result) == ["appeared", "disappeared", "relisted"]
    relist = result.events[-1]
    assert relist.external_lot_id == "12345"
    assert relist.payload["relisted_as"] == "67890"
    assert relist.payload["previous_external_lot_id"] == "12345"


def test_no_relist_without_identifier() -> None:
    previous = index_rows([_row(1, "12345", vin=None)])
    current = index_rows([_row(2, "67890", vin=None)])

    assert "relisted" not in _types(diff_snapshots(previous, current))


def test_no_relist_for_different_vehicle() -> None:
    previous = index_rows([_row(1, "12345", vin=VIN_A)])
    current = index_rows([_row(2, "67890", vin=VIN_B)])

    assert "relisted" not in _types(diff_snapshots(previous, current))
