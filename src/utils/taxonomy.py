"""
Lotline — Taxonomy Mapping Layer

Raw export labels → canonical codes (e.g. "Pure Sale" → "status_active").

Lookup is a pure function over an injectable mapping. Labels the mapping
does not know are reported to a miss sink so new vendor vocabulary shows up
in monitoring instead of silently collapsing into "unknown".
"""

from __future__ import annotations

import re
from collections import Counter
from enum import Enum
from typing import Callable, Mapping

import structlog

logger = structlog.get_logger(__name__)

# (domain, raw_label) -> None
MissSink = Callable[[str, str], None]


class StatusCode(str, Enum):
    """Normalized sale status codes."""
    ACTIVE = "status_active"
    SOLD = "status_sold"
    SCHEDULED = "status_scheduled"
    ON_HOLD = "status_on_hold"
    CANCELLED = "status_cancelled"
    UNKNOWN = "status_unknown"


# ---------------------------------------------------------------------------
# Mapping tables (keys are uppercased, trimmed labels)
# ---------------------------------------------------------------------------

STATUS_MAP: dict[str, str] = {
    "PURE SALE": StatusCode.ACTIVE.value,
    "ON MINIMUM BID": StatusCode.ACTIVE.value,
    "SOLD": StatusCode.SOLD.value,
    "FUTURE SALE": StatusCode.SCHEDULED.value,
    "PENDING SALE": StatusCode.SCHEDULED.value,
    "ON HOLD": StatusCode.ON_HOLD.value,
    "CANCELLED": StatusCode.CANCELLED.value,
}

DAMAGE_MAP: dict[str, str] = {
    "WATER/FLOOD": "damage_flood",
    "REAR END": "damage_rear_end",
    "FRONT END": "damage_front_end",
    "MECHANICAL": "damage_mechanical",
    "NORMAL WEAR": "damage_normal_wear",
    "MINOR DENT/SCRATCHES": "damage_minor_dent",
    "ALL OVER": "damage_all_over",
    "HAIL DAMAGE": "damage_hail",
    "UNDERCARRIAGE": "damage_undercarriage",
    "SIDE": "damage_side",
    "FRAME DAMAGE": "damage_frame",
    "BURN - ENGINE": "damage_burn_engine",
    "BURN - INTERIOR": "damage_burn_interior",
    "VANDALISM": "damage_vandalism",
    "BIOHAZARD/CHEM": "damage_biohazard",
    "TOP/ROOF": "damage_roof",
    "ROLLOVER": "damage_rollover",
}

TITLE_MAP: dict[str, str] = {
    "NR": "title_non_repairable",
    "SC": "title_salvage_certificate",
    "CT": "title_certificate_of_title",
    "SV": "title_salvage",
    "RB": "title_rebuilt",
    "CL": "title_clear",
    "JK": "title_junk",
    "PR": "title_parts_only",
    "BN": "title_bond_title",
    "WT": "title_certificate_of_destruction",
}


class UnknownLabelCounter:
    """
    In-memory miss sink. Counts unknown labels per domain and logs the
    first sighting of each one.
    """

    def __init__(self) -> None:
        self.counts: Counter[tuple[str, str]] = Counter()

    def __call__(self, domain: str, raw: str) -> None:
        key = (domain, raw)
        if key not in self.counts:
            logger.warning("taxonomy_unknown_label", domain=domain, raw_label=raw)
        self.counts[key] += 1

    def for_domain(self, domain: str) -> dict[str, int]:
        return {raw: n for (d, raw), n in self.counts.items() if d == domain}

    def __len__(self) -> int:
        return len(self.counts)


def lookup(
    domain: str,
    raw: str | None,
    mapping: Mapping[str, str],
    sink: MissSink | None = None,
) -> str | None:
    """
    Map a raw label to its canonical code.

    Returns None for blank input (not a miss) and for labels the mapping
    does not contain (a miss, reported to `sink`).
    """
    if raw is None or not raw.strip():
        return None
    code = mapping.get(raw.strip().upper())
    if code is None and sink is not None:
        sink(domain, raw.strip())
    return code


def _slug(raw: str) -> str:
    return re.sub(r"[^a-z0-9]", "_", raw.strip().lower())[:30]


def normalize_status(
    raw: str | None,
    mapping: Mapping[str, str] = STATUS_MAP,
    sink: MissSink | None = None,
) -> str:
    """Sale status code; blank and unknown labels become status_unknown."""
    return lookup("statuses", raw, mapping, sink) or StatusCode.UNKNOWN.value


def normalize_damage(
    raw: str | None,
    mapping: Mapping[str, str] = DAMAGE_MAP,
    sink: MissSink | None = None,
) -> str | None:
    """Damage code; unknown labels keep a slug so distinct damages stay distinct."""
    if raw is None or not raw.strip():
        return None
    return lookup("damage_types", raw, mapping, sink) or f"damage_unknown_{_slug(raw)}"


def normalize_title(
    raw: str | None,
    mapping: Mapping[str, str] = TITLE_MAP,
    sink: MissSink | None = None,
) -> str | None:
    if raw is None or not raw.strip():
        return None
    return lookup("title_types", raw, mapping, sink) or f"title_unknown_{_slug(raw)}"
