"""
Lotline — Outcome Resolver Job

Re-evaluates lots whose outcome is still open against the event log and
writes verdicts back onto the canonical lot.

Candidates: lots with at least one `disappeared` event whose outcome is
missing/unknown or below the highest rule confidence. A verdict is written
only if it raises the stored confidence, so replays never rewrite or
downgrade an outcome.

A relist verdict also links the attempt chain: the new lot gets
previous_attempt_id = old lot and relist_count = old + 1. If the new lot
is not canonical yet, the old lot is deferred so both are written together
on a later run.
"""

from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import EventType, JobName, Outcome, settings
from src.engine.rules import RULES, EventView, LotState, Rule, RuleContext, Verdict, evaluate, should_write
from src.errors import (
    LotlineError,
    StoreUnavailableError,
    is_connectivity_error,
    record_conflict,
)
from src.models.event import AuctionEvent
from src.models.lot import CanonicalLot
from src.pipeline.summary import RunSummary, audit_row, record_run
from src.store.events import EventStore

logger = structlog.get_logger(__name__)


class OutcomeResolver:
    """Applies the ordered outcome rules to open lots."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        batch_size: int | None = None,
        rules: tuple[Rule, ...] = RULES,
    ):
        self.session_factory = session_factory
        self.batch_size = batch_size or settings.RESOLVER_BATCH_SIZE
        self.rules = rules

    async def run(
        self,
        dry_run: bool = False,
        lot_id: str | None = None,
        now: datetime | None = None,
        grace_hours: float | None = None,
        on_approval_days: float | None = None,
    ) -> RunSummary:
        """
        Resolve all open candidates (or just `lot_id`).

        Counts: candidates, resolved, per-outcome totals, unresolved,
        unchanged (verdict not stronger than stored), deferred, chain_linked.
        """
        ctx = RuleContext.from_settings(now=now, grace_hours=grace_hours, on_approval_days=on_approval_days)
        summary = RunSummary(job=JobName.RESOLVE, dry_run=dry_run)
        for key in ("candidates", "resolved", "unresolved", "unchanged", "deferred", "errored"):
            summary.count(key, 0)

        last_id = 0
        try:
            while True:
                async with self.session_factory() as session:
                    async with session.begin():
                        lots = await self._candidates(session, last_id, lot_id)
                        for lot in lots:
                            last_id = lot.id
                            await self._resolve_lot(session, lot, ctx, summary, dry_run)
                if len(lots) < self.batch_size:
                    break
        except LotlineError as exc:
            summary.fail(exc)
            raise
        except (SQLAlchemyError, OSError) as exc:
            if not is_connectivity_error(exc):
                summary.fail(exc)
                raise
            wrapped = StoreUnavailableError(f"store unavailable during resolve: {exc}")
            summary.fail(wrapped)
            raise wrapped from exc
        finally:
            await record_run(self.session_factory, summary)
        return summary

    async def _candidates(
        self, session: AsyncSession, after_id: int, lot_id: str | None
    ) -> list[CanonicalLot]:
        disappeared = select(AuctionEvent.external_lot_id).where(
            AuctionEvent.event_type == EventType.DISAPPEARED.value
        )
        stmt = (
            select(CanonicalLot)
            .where(
                CanonicalLot.id > after_id,
                CanonicalLot.external_lot_id.in_(disappeared),
                or_(
                    CanonicalLot.outcome.is_(None),
                    CanonicalLot.outcome == Outcome.UNKNOWN.value,
                    CanonicalLot.outcome_confidence.is_(None),
                    CanonicalLot.outcome_confidence < settings.terminal_confidence,
                ),
            )
            .order_by(CanonicalLot.id)
            .limit(self.batch_size)
        )
        if lot_id is not None:
            stmt = stmt.where(CanonicalLot.external_lot_id == lot_id)
        return list((await session.execute(stmt)).scalars().all())

    async def _events_for(self, store: EventStore, lot: CanonicalLot) -> list[EventView]:
        events = {e.id: e for e in await store.timeline_for_lot(lot.external_lot_id)}
        if lot.vehicle_identifier:
            for e in await store.timeline_for_vehicle(
                lot.vehicle_identifier, [EventType.APPEARED, EventType.RELISTED]
            ):
                events.setdefault(e.id, e)
        return sorted((EventView.from_model(e) for e in events.values()), key=lambda v: v.order_key)

    async def _resolve_lot(
        self,
        session: AsyncSession,
        lot: CanonicalLot,
        ctx: RuleContext,
        summary: RunSummary,
        dry_run: bool,
    ) -> None:
        summary.count("candidates")
        state = LotState.from_model(lot)
        events = await self._events_for(EventStore(session), lot)

        verdict = evaluate(events, state, ctx, self.rules)
        if verdict is None:
            summary.count("unresolved")
            return
        if not should_write(state, verdict):
            summary.count("unchanged")
            return

        new_lot = None
        if verdict.relisted_as:
            new_lot = (
                await session.execute(
                    select(CanonicalLot).where(CanonicalLot.external_lot_id == verdict.relisted_as)
                )
            ).scalar_one_or_none()
            if new_lot is None:
                summary.count("deferred")
                logger.info(
                    "resolver_relist_deferred",
                    external_lot_id=lot.external_lot_id,
                    relisted_as=verdict.relisted_as,
                )
                return

        if dry_run:
            summary.count("resolved")
            summary.count(verdict.outcome.value)
            logger.info(
                "resolver_dry_run_verdict",
                external_lot_id=lot.external_lot_id,
                outcome=verdict.outcome.value,
                confidence=str(verdict.confidence),
                method=verdict.method.value,
            )
            return

        external_lot_id = lot.external_lot_id
        try:
            async with session.begin_nested():
                linked = self._apply(lot, new_lot, verdict, ctx.now)
                await session.flush()
        except (SQLAlchemyError, OverflowError, ValueError) as exc:
            if is_connectivity_error(exc):
                raise
            conflict = record_conflict(exc)
            session.add(audit_row(
                JobName.RESOLVE,
                conflict.error_class,
                conflict.reason,
                external_lot_id=external_lot_id,
                constraint_name=conflict.constraint_name,
                detail={"outcome": verdict.outcome.value, **conflict.context},
            ))
            summary.error(conflict.error_class)
            logger.warning(
                "resolver_write_failed",
                external_lot_id=external_lot_id,
                reason=conflict.reason,
                constraint=conflict.constraint_name,
            )
            return

        summary.count("resolved")
        summary.count(verdict.outcome.value)
        if linked:
            summary.count("chain_linked")
        logger.info(
            "lot_outcome_resolved",
            external_lot_id=external_lot_id,
            outcome=verdict.outcome.value,
            confidence=str(verdict.confidence),
            method=verdict.method.value,
        )

    @staticmethod
    def _apply(
        lot: CanonicalLot,
        new_lot: CanonicalLot | None,
        verdict: Verdict,
        now: datetime,
    ) -> bool:
        """Write the verdict; link the attempt chain once. Returns True if linked."""
        lot.outcome = verdict.outcome.value
        lot.outcome_confidence = verdict.confidence
        lot.outcome_resolved_at = now
        lot.detection_method = verdict.method.value
        lot.detection_notes = verdict.justification

        if new_lot is None or new_lot.id == lot.id or new_lot.previous_attempt_id is not None:
            return False
        new_lot.previous_attempt_id = lot.id
        new_lot.relist_count = (lot.relist_count or 0) + 1
        return True
