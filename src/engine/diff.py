"""
Lotline — Snapshot Diff (pure)

Compares two keyed snapshots and produces event drafts. No I/O: the
diff job loads rows, calls diff_snapshots(), and hands the drafts to the
EventStore.

    appeared     = keys(current) - keys(previous)
    disappeared  = keys(previous) - keys(current)
    common       = keys(previous) & keys(current)   → field comparisons
    relisted     = disappeared lots whose vehicle now sits under another lot
"""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping

from src.config import EventType
from src.engine.identifier import canonicalize_identifier
from src.utils.export_row import ExportRow
from src.utils.timeutil import ensure_utc, isoformat_or_none

_MIN_TS = datetime.min


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SnapshotRow:
    """The comparable projection of one staged record."""

    record_id: int
    external_lot_id: str
    vehicle_identifier: str | None
    source_timestamp: datetime | None
    bid: Decimal | None
    auction_time: datetime | None
    status: str

    @classmethod
    def from_field_bag(
        cls,
        record_id: int,
        external_lot_id: str,
        bag: Mapping[str, Any],
        vehicle_identifier_raw: str | None = None,
        source_timestamp: datetime | None = None,
    ) -> "SnapshotRow":
        row = ExportRow.from_field_bag(bag)
        return cls(
            record_id=record_id,
            external_lot_id=external_lot_id,
            vehicle_identifier=canonicalize_identifier(vehicle_identifier_raw or row.vehicle_identifier),
            source_timestamp=ensure_utc(source_timestamp) or row.source_timestamp,
            bid=row.current_bid,
            auction_time=row.auction_time,
            status=row.status_code,
        )

    def state(self) -> dict[str, Any]:
        """JSON-safe state used in event payloads."""
        return {
            "bid": str(self.bid) if self.bid is not None else None,
            "auction_time": isoformat_or_none(self.auction_time),
            "status": self.status,
            "source_timestamp": isoformat_or_none(self.source_timestamp),
        }


@dataclass(frozen=True)
class EventDraft:
    """An event not yet persisted. The snapshot pair is supplied on append."""

    event_type: EventType
    external_lot_id: str
    vehicle_identifier: str | None
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class DiffResult:
    appeared: list[str]
    disappeared: list[str]
    common: list[str]
    events: list[EventDraft]

    def counts(self) -> dict[str, int]:
        tally = Counter(e.event_type.value for e in self.events)
        return {t.value: tally.get(t.value, 0) for t in EventType}


# ---------------------------------------------------------------------------
# Indexing
# ---------------------------------------------------------------------------


def _precedence(row: SnapshotRow) -> tuple[datetime, int]:
    ts = row.source_timestamp.replace(tzinfo=None) if row.source_timestamp else _MIN_TS
    return ts, row.record_id


def index_rows(rows: Iterable[SnapshotRow]) -> dict[str, SnapshotRow]:
    """
    Key rows by external_lot_id.

    Duplicate keys within one snapshot keep the row with the newest
    source_timestamp, then the highest record id.
    """
    index: dict[str, SnapshotRow] = {}
    for row in rows:
        if not row.external_lot_id:
            continue
        existing = index.get(row.external_lot_id)
        if existing is None or _precedence(row) > _precedence(existing):
            index[row.external_lot_id] = row
    return index


def vehicle_index(rows: Mapping[str, SnapshotRow]) -> dict[str, list[str]]:
    """vehicle_identifier → sorted external_lot_ids. Null identifiers are skipped."""
    index: dict[str, list[str]] = defaultdict(list)
    for lot_id, row in rows.items():
        if row.vehicle_identifier:
            index[row.vehicle_identifier].append(lot_id)
    return {vin: sorted(lots) for vin, lots in index.items()}


# ---------------------------------------------------------------------------
# Comparisons
# ---------------------------------------------------------------------------


def compare_fields(previous: SnapshotRow, current: SnapshotRow) -> list[EventDraft]:
    """
    Field-level changes for a lot present in both snapshots, followed by a
    summary `updated` draft when at least one field changed.
    """
    changes: list[tuple[EventType, str, Any, Any]] = []

    # Unparseable bids are not comparable.
    if previous.bid is not None and current.bid is not None and previous.bid != current.bid:
        changes.append((EventType.PRICE_CHANGED, "bid", str(previous.bid), str(current.bid)))

    if previous.auction_time != current.auction_time:
        changes.append((
            EventType.DATE_CHANGED,
            "auction_time",
            isoformat_or_none(previous.auction_time),
            isoformat_or_none(current.auction_time),
        ))

    if previous.status != current.status:
        changes.append((EventType.STATUS_CHANGED, "status", previous.status, current.status))

    drafts = [
        EventDraft(
            event_type=event_type,
            external_lot_id=current.external_lot_id,
            vehicle_identifier=current.vehicle_identifier,
            payload={"field": name, "before": before, "after": after},
        )
        for event_type, name, before, after in changes
    ]
    if drafts:
        drafts.append(EventDraft(
            event_type=EventType.UPDATED,
            external_lot_id=current.external_lot_id,
            vehicle_identifier=current.vehicle_identifier,
            payload={
                "changed_fields": [name for _, name, _, _ in changes],
                "before": previous.state(),
                "after": current.state(),
            },
        ))
    return drafts


def detect_relists(
    disappeared: Iterable[str],
    previous: Mapping[str, SnapshotRow],
    current: Mapping[str, SnapshotRow],
) -> list[EventDraft]:
    """
    A disappeared lot whose vehicle identifier now maps to a different lot
    in the current snapshot was relisted. The draft is keyed on the old lot.
    """
    by_vehicle = vehicle_index(current)
    drafts = []
    for lot_id in disappeared:
        vin = previous[lot_id].vehicle_identifier
        if not vin:
            continue
        new_lots = [other for other in by_vehicle.get(vin, []) if other != lot_id]
        if not new_lots:
            continue
        drafts.append(EventDraft(
            event_type=EventType.RELISTED,
            external_lot_id=lot_id,
            vehicle_identifier=vin,
            payload={
                "previous_external_lot_id": lot_id,
                "relisted_as": new_lots[0],
                "current_external_lot_ids": new_lots,
            },
        ))
    return drafts


def diff_snapshots(
    previous: Mapping[str, SnapshotRow],
    current: Mapping[str, SnapshotRow],
) -> DiffResult:
    """
    Full diff of two indexed snapshots.

    appeared, disappeared and common partition the union of lot ids.
    Drafts come out in a deterministic order (by lot id within each kind).
    """
    prev_keys, curr_keys = set(previous), set(current)
    appeared = sorted(curr_keys - prev_keys)
    disappeared = sorted(prev_keys - curr_keys)
    common = sorted(prev_keys & curr_keys)

    events: list[EventDraft] = []
    for lot_id in appeared:
        row = current[lot_id]
        events.append(EventDraft(EventType.APPEARED, lot_id, row.vehicle_identifier, {"after": row.state()}))
    for lot_id in disappeared:
        row = previous[lot_id]
        events.append(EventDraft(EventType.DISAPPEARED, lot_id, row.vehicle_identifier, {"last_seen": row.state()}))
    for lot_id in common:
        events.extend(compare_fields(previous[lot_id], current[lot_id]))
    events.extend(detect_relists(disappeared, previous, current))

    return DiffResult(appeared=appeared, disappeared=disappeared, common=common, events=events)

