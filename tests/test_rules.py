"""Tests for outcome inference rules."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from src.config import DetectionMethod, Outcome
from src.engine.rules import (
    EventView,
    LotState,
    RuleContext,
    Verdict,
    current_disappearance,
    evaluate,
    find_relist,
    should_write,
)
from tests.conftest import VIN_A

AUCTION = datetime(2025, 10, 20, 14, 0, tzinfo=timezone.utc)
GONE = AUCTION + timedelta(hours=6)


def _event(id: int, event_type: str, lot: str, at: datetime, vin: str | None = VIN_A, **payload) -> EventView:
    return EventView(
        id=id,
        event_type=event_type,
        external_lot_id=lot,
        vehicle_identifier=vin,
        payload=payload,
        created_at=at,
    )


def _lot(buy_now: str | None = None, auction_time: datetime | None = AUCTION, **kwargs) -> LotState:
    return LotState(
        id=1,
        external_lot_id="12345",
        vehicle_identifier=VIN_A,
        auction_time=auction_time,
        buy_now_amount=Decimal(buy_now) if buy_now else None,
        **kwargs,
    )


def _ctx(now: datetime) -> RuleContext:
    return RuleContext(
        now=now,
        grace=timedelta(hours=24),
        on_approval_wait=timedelta(days=7),
        confidence_relist=Decimal("0.95"),
        confidence_disappearance=Decimal("0.85"),
        confidence_on_approval=Decimal("0.60"),
    )


# ---------------------------------------------------------------------------
# Event-log helpers
# ---------------------------------------------------------------------------


def test_current_disappearance_ignores_lots_that_reappeared() -> None:
    events = [
        _event(1, "appeared", "12345", AUCTION - timedelta(days=2)),
        _event(2, "disappeared", "12345", GONE),
        _event(3, "appeared", "12345", GONE + timedelta(hours=1)),
    ]

    assert current_disappearance(events, "12345") is None


def test_current_disappearance_returns_latest() -> None:
    events = [
        _event(1, "disappeared", "12345", GONE - timedelta(days=3)),
        _event(2, "appeared", "12345", GONE - timedelta(days=2)),
        _event(3, "disappeared", "12345", GONE),
    ]

    assert current_disappearance(events, "12345").id == 3


def test_find_relist_ignores_appearances_before_disappearance() -> None:
    gone = _event(1, "disappeared", "12345", GONE)
    events = [gone, _event(2, "appeared", "67890", GONE - timedelta(days=1))]

    assert find_relist(events, _lot(), gone) is None


def test_find_relist_uses_reappearance_of_same_vehicle() -> None:
    gone = _event(1, "disappeared", "12345", GONE)
    events = [gone, _event(2, "appeared", "67890", GONE)]

    assert find_relist(events, _lot(), gone) == "67890"


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def test_relist_is_not_sold_with_top_confidence() -> None:
    events = [
        _event(1, "disappeared", "12345", GONE),
        _event(2, "relisted", "12345", GONE, relisted_as="67890"),
    ]

    verdict = evaluate(events, _lot(), _ctx(GONE))

    assert verdict.outcome == Outcome.NOT_SOLD
    assert verdict.confidence == Decimal("0.95")
    assert verdict.method == DetectionMethod.VIN_REAPPEARANCE
    assert verdict.relisted_as == "67890"


def test_relist_wins_even_for_reserve_lot() -> None:
    events = [
        _event(1, "disappeared", "12345", GONE),
        _event(2, "relisted", "12345", GONE, relisted_as="67890"),
    ]

    verdict = evaluate(events, _lot(buy_now="5000"), _ctx(GONE + timedelta(days=30)))

    assert verdict.outcome == Outcome.NOT_SOLD


def test_disappearance_after_grace_is_sold() -> None:
    events = [_event(1, "disappeared", "12345", GONE)]

    verdict = evaluate(events, _lot(), _ctx(AUCTION + timedelta(hours=24)))

    assert verdict.outcome == Outcome.SOLD
    assert verdict.confidence == Decimal("0.85")
    assert verdict.method == DetectionMethod.SNAPSHOT_DISAPPEARANCE


def test_disappearance_within_grace_is_unresolved() -> None:
    events = [_event(1, "disappeared", "12345", GONE)]

    assert evaluate(events, _lot(), _ctx(AUCTION + timedelta(hours=23))) is None


def test_unknown_auction_time_is_unresolved() -> None:
    events = [_event(1, "disappeared", "12345", GONE)]

    assert evaluate(events, _lot(auction_time=None), _ctx(GONE + timedelta(days=30))) is None


def test_lot_still_listed_is_unresolved() -> None:
    events = [_event(1, "appeared", "12345", AUCTION - timedelta(days=1))]

    assert evaluate(events, _lot(), _ctx(GONE + timedelta(days=30))) is None


def test_reserve_lot_waits_for_on_approval_window() -> None:
    events = [_event(1, "disappeared", "12345", GONE)]
    lot = _lot(buy_now="5000")

    assert evaluate(events, lot, _ctx(GONE + timedelta(days=6))) is None

    verdict = evaluate(events, lot, _ctx(GONE + timedelta(days=7)))
    assert verdict.outcome == Outcome.ON_APPROVAL
    assert verdict.confidence == Decimal("0.60")
    assert verdict.method == DetectionMethod.RESERVE_NO_RELIST


def test_rules_order_is_injectable() -> None:
    events = [_event(1, "disappeared", "12345", GONE)]

    def always_unknown(events, lot, ctx):
        return Verdict(Outcome.UNKNOWN, Decimal("0.10"), DetectionMethod.SNAPSHOT_DISAPPEARANCE, "test")

    verdict = evaluate(events, _lot(), _ctx(GONE + timedelta(days=2)), rules=[always_unknown])

    assert verdict.outcome == Outcome.UNKNOWN


def test_context_from_settings_overrides() -> None:
    now = datetime(2025, 10, 25, tzinfo=timezone.utc)

    ctx = RuleContext.from_settings(now=now, grace_hours=48, on_approval_days=3)

    assert ctx.now == now
    assert ctx.grace == timedelta(hours=48)
    assert ctx.on_approval_wait == timedelta(days=3)


# ---------------------------------------------------------------------------
# Monotonic confidence
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "stored, incoming, expected",
    [
        (None, "0.60", True),
        ("0.60", "0.85", True),
        ("0.85", "0.85", False),
        ("0.95", "0.85", False),
    ],
)
def test_should_write_only_on_higher_confidence(stored, incoming, expected) -> None:
    lot = _lot(outcome_confidence=Decimal(stored) if stored else None)
    verdict = Verdict(Outcome.SOLD, Decimal(incoming), DetectionMethod.SNAPSHOT_DISAPPEARANCE, "x")

    assert should_write(lot, verdict) is expected
