"""
Lotline — Canonical Merge Rules (pure)

Decides how an incoming staged row folds into canonical state:

- Vehicles: fill-missing-only. A known descriptive value is never replaced.
- Lots: source_timestamp is a monotonic watermark. Only a strictly newer
  row may update; on update, incoming values win where present and blanks
  never erase known data.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from src.utils.export_row import ExportRow
from src.utils.taxonomy import MissSink, normalize_damage, normalize_status, normalize_title
from src.utils.timeutil import ensure_utc

VEHICLE_FIELDS = (
    "year", "make", "model", "trim", "body", "fuel", "transmission", "drive", "engine", "color",
)

LOT_FIELDS = (
    "auction_time", "current_bid", "buy_now_amount", "status", "sale_status_raw",
    "yard_name", "location_city", "location_state", "location_country", "location_zip",
    "damage_primary", "damage_secondary", "title_type", "odometer", "retail_value",
    "repair_cost", "runs_drives", "has_keys", "currency",
)


class MergeDecision(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    UNCHANGED = "unchanged"                   # same watermark: replay, nothing to do
    STALE = "stale_source_timestamp"          # older than the watermark: conflict
    MISSING_TIMESTAMP = "missing_source_timestamp"


def decide(
    lot_exists: bool,
    current_ts: datetime | None,
    incoming_ts: datetime | None,
) -> MergeDecision:
    """Watermark comparison for one incoming row against the canonical lot."""
    if not lot_exists:
        return MergeDecision.INSERT
    if incoming_ts is None:
        return MergeDecision.MISSING_TIMESTAMP
    current_ts, incoming_ts = ensure_utc(current_ts), ensure_utc(incoming_ts)
    if current_ts is None or incoming_ts > current_ts:
        return MergeDecision.UPDATE
    if incoming_ts == current_ts:
        return MergeDecision.UNCHANGED
    return MergeDecision.STALE


def advance_watermark(current_ts: datetime | None, incoming_ts: datetime | None) -> datetime | None:
    current_ts, incoming_ts = ensure_utc(current_ts), ensure_utc(incoming_ts)
    if current_ts is None:
        return incoming_ts
    if incoming_ts is None:
        return current_ts
    return max(current_ts, incoming_ts)


# ---------------------------------------------------------------------------
# Field projection
# ---------------------------------------------------------------------------


def vehicle_fields(row: ExportRow) -> dict[str, Any]:
    return {name: getattr(row, name) for name in VEHICLE_FIELDS}


def lot_fields(row: ExportRow, sink: MissSink | None = None) -> dict[str, Any]:
    """Canonical lot columns for a row. Taxonomy misses are reported to `sink`."""
    return {
        "auction_time": row.auction_time,
        "current_bid": row.current_bid,
        "buy_now_amount": row.buy_now_amount,
        "status": normalize_status(row.sale_status, sink=sink),
        "sale_status_raw": row.sale_status,
        "yard_name": row.yard_name,
        "location_city": row.location_city,
        "location_state": row.location_state,
        "location_country": row.location_country,
        "location_zip": row.location_zip,
        "damage_primary": normalize_damage(row.damage_primary, sink=sink),
        "damage_secondary": normalize_damage(row.damage_secondary, sink=sink),
        "title_type": normalize_title(row.title_type, sink=sink),
        "odometer": row.odometer,
        "retail_value": row.retail_value,
        "repair_cost": row.repair_cost,
        "runs_drives": row.runs_drives,
        "has_keys": row.has_keys,
        "currency": row.currency,
    }


# ---------------------------------------------------------------------------
# Merge policies → dict of columns to change
# ---------------------------------------------------------------------------


def fill_missing(current: Mapping[str, Any], incoming: Mapping[str, Any]) -> dict[str, Any]:
    """Columns where the canonical value is missing and the incoming one is known."""
    return {
        name: value
        for name, value in incoming.items()
        if value is not None and current.get(name) is None
    }


def incoming_wins(current: Mapping[str, Any], incoming: Mapping[str, Any]) -> dict[str, Any]:
    """Columns where the incoming value is present and differs from canonical."""
    changes = {}
    for name, value in incoming.items():
        if value is None:
            continue
        existing = current.get(name)
        if isinstance(existing, datetime) and isinstance(value, datetime):
            if ensure_utc(existing) == ensure_utc(value):
                continue
        elif existing == value:
            continue
        changes[name] = value
    return changes
