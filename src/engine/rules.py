"""
Lotline — Outcome Rules (pure)

Infers the result of an auction attempt from indirect signals. Each rule
is a pure function (events, lot, context) -> Verdict | None; RULES lists
them in priority order and evaluate() returns the first verdict.

The rules do not overlap:

    relist          disappeared, vehicle back under another lot     → not_sold  0.95
    disappearance   disappeared, auction + grace passed, no reserve → sold      0.85
    on_approval     disappeared, auction + grace passed, reserve,
                    no relist within the waiting window             → on_approval 0.60

Confidence scores are heuristic weights, not calibrated probabilities.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Iterable, Optional, Sequence

from src.config import DetectionMethod, EventType, Outcome, settings
from src.utils.timeutil import ensure_utc, utcnow


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EventView:
    """Read-only projection of a stored AuctionEvent."""

    id: int
    event_type: str
    external_lot_id: str
    vehicle_identifier: str | None
    payload: dict
    created_at: datetime

    @classmethod
    def from_model(cls, event) -> "EventView":
        return cls(
            id=event.id,
            event_type=event.event_type,
            external_lot_id=event.external_lot_id,
            vehicle_identifier=event.vehicle_identifier,
            payload=event.payload or {},
            created_at=ensure_utc(event.created_at),
        )

    @property
    def order_key(self) -> tuple[datetime, int]:
        return self.created_at, self.id


@dataclass(frozen=True)
class LotState:
    """The canonical lot fields the rules look at."""

    id: int
    external_lot_id: str
    vehicle_identifier: str | None
    auction_time: datetime | None
    buy_now_amount: Decimal | None
    outcome: str | None = None
    outcome_confidence: Decimal | None = None

    @classmethod
    def from_model(cls, lot) -> "LotState":
        return cls(
            id=lot.id,
            external_lot_id=lot.external_lot_id,
            vehicle_identifier=lot.vehicle_identifier,
            auction_time=ensure_utc(lot.auction_time),
            buy_now_amount=lot.buy_now_amount,
            outcome=lot.outcome,
            outcome_confidence=lot.outcome_confidence,
        )

    @property
    def has_reserve(self) -> bool:
        """A buy-it-now price marks a reserve auction."""
        return self.buy_now_amount is not None and self.buy_now_amount > 0


@dataclass(frozen=True)
class RuleContext:
    now: datetime
    grace: timedelta
    on_approval_wait: timedelta
    confidence_relist: Decimal
    confidence_disappearance: Decimal
    confidence_on_approval: Decimal

    @classmethod
    def from_settings(
        cls,
        now: datetime | None = None,
        grace_hours: float | None = None,
        on_approval_days: float | None = None,
    ) -> "RuleContext":
        return cls(
            now=ensure_utc(now) if now is not None else utcnow(),
            grace=timedelta(hours=settings.DISAPPEARANCE_GRACE_HOURS if grace_hours is None else grace_hours),
            on_approval_wait=timedelta(
                days=settings.ON_APPROVAL_WAIT_DAYS if on_approval_days is None else on_approval_days
            ),
            confidence_relist=settings.CONFIDENCE_RELIST,
            confidence_disappearance=settings.CONFIDENCE_DISAPPEARANCE,
            confidence_on_approval=settings.CONFIDENCE_ON_APPROVAL,
        )


@dataclass(frozen=True)
class Verdict:
    outcome: Outcome
    confidence: Decimal
    method: DetectionMethod
    justification: str
    relisted_as: str | None = None


Rule = Callable[[Sequence[EventView], LotState, RuleContext], Optional[Verdict]]


# ---------------------------------------------------------------------------
# Event-log helpers
# ---------------------------------------------------------------------------


def current_disappearance(events: Iterable[EventView], external_lot_id: str) -> EventView | None:
    """
    The latest `disappeared` event for the lot, provided the lot has not
    appeared again since. None when the lot is currently listed.
    """
    last_disappeared = None
    last_appeared = None
    for e in events:
        if e.external_lot_id != external_lot_id:
            continue
        if e.event_type == EventType.DISAPPEARED.value:
            if last_disappeared is None or e.order_key > last_disappeared.order_key:
                last_disappeared = e
        elif e.event_type == EventType.APPEARED.value:
            if last_appeared is None or e.order_key > last_appeared.order_key:
                last_appeared = e
    if last_disappeared is None:
        return None
    if last_appeared is not None and last_appeared.order_key > last_disappeared.order_key:
        return None
    return last_disappeared


def find_relist(
    events: Iterable[EventView],
    lot: LotState,
    disappeared: EventView,
) -> str | None:
    """
    External lot id the vehicle was relisted under, if any.

    Either an explicit `relisted` event for this lot, or the same vehicle
    `appeared` under a different lot at or after the disappearance.
    """
    reappearances = []
    for e in events:
        if e.event_type == EventType.RELISTED.value and e.external_lot_id == lot.external_lot_id:
            target = e.payload.get("relisted_as")
            if target:
                return target
        elif (
            e.event_type == EventType.APPEARED.value
            and lot.vehicle_identifier
            and e.vehicle_identifier == lot.vehicle_identifier
            and e.external_lot_id != lot.external_lot_id
            and e.created_at >= disappeared.created_at
        ):
            reappearances.append(e)
    if reappearances:
        return min(reappearances, key=lambda e: e.order_key).external_lot_id
    return None


def _auction_settled(lot: LotState, ctx: RuleContext) -> bool:
    """Auction time known and the grace period after it has elapsed."""
    return lot.auction_time is not None and lot.auction_time + ctx.grace <= ctx.now


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def relist_rule(events: Sequence[EventView], lot: LotState, ctx: RuleContext) -> Verdict | None:
    disappeared = current_disappearance(events, lot.external_lot_id)
    if disappeared is None:
        return None
    target = find_relist(events, lot, disappeared)
    if target is None:
        return None
    return Verdict(
        outcome=Outcome.NOT_SOLD,
        confidence=ctx.confidence_relist,
        method=DetectionMethod.VIN_REAPPEARANCE,
        justification=(
            f"Vehicle {lot.vehicle_identifier} relisted as lot {target} "
            f"after lot {lot.external_lot_id} disappeared"
        ),
        relisted_as=target,
    )


def disappearance_rule(events: Sequence[EventView], lot: LotState, ctx: RuleContext) -> Verdict | None:
    disappeared = current_disappearance(events, lot.external_lot_id)
    if disappeared is None or lot.has_reserve or not _auction_settled(lot, ctx):
        return None
    if find_relist(events, lot, disappeared) is not None:
        return None
    return Verdict(
        outcome=Outcome.SOLD,
        confidence=ctx.confidence_disappearance,
        method=DetectionMethod.SNAPSHOT_DISAPPEARANCE,
        justification=(
            f"Disappeared at {disappeared.created_at.isoformat()}, "
            f"grace period {ctx.grace.total_seconds() / 3600:g}h after auction"
        ),
    )


def on_approval_rule(events: Sequence[EventView], lot: LotState, ctx: RuleContext) -> Verdict | None:
    disappeared = current_disappearance(events, lot.external_lot_id)
    if disappeared is None or not lot.has_reserve or not _auction_settled(lot, ctx):
        return None
    if disappeared.created_at + ctx.on_approval_wait > ctx.now:
        return None
    if find_relist(events, lot, disappeared) is not None:
        return None
    return Verdict(
        outcome=Outcome.ON_APPROVAL,
        confidence=ctx.confidence_on_approval,
        method=DetectionMethod.RESERVE_NO_RELIST,
        justification=(
            f"Reserve price {lot.buy_now_amount}, "
            f"no relist for {ctx.on_approval_wait.total_seconds() / 86400:g} days"
        ),
    )


RULES: tuple[Rule, ...] = (relist_rule, disappearance_rule, on_approval_rule)


def evaluate(
    events: Sequence[EventView],
    lot: LotState,
    ctx: RuleContext,
    rules: Sequence[Rule] = RULES,
) -> Verdict | None:
    """First verdict from the ordered rules, or None (unresolved)."""
    for rule in rules:
        verdict = rule(events, lot, ctx)
        if verdict is not None:
            return verdict
    return None


def should_write(lot: LotState, verdict: Verdict) -> bool:
    """Outcome confidence only increases; equal confidence is already recorded."""
    if lot.outcome_confidence is None:
        return True
    return verdict.confidence > Decimal(lot.outcome_confidence)
