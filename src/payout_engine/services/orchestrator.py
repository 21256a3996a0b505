"""Settlement orchestrator - drives preview and commit batches for a period."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payout_engine.calculators import Breakdown, Period, SettlementCalculator, parse_rate
from payout_engine.config import Settings, get_settings
from payout_engine.events import AsyncEventEmitter, EventMetadata, PayoutBatchCompleted
from payout_engine.exceptions import (
    AlreadySettled,
    FarmerNotFound,
    FarmerSettlementError,
    InvalidRate,
)
from payout_engine.models import Payout
from payout_engine.services.committer import PayoutRecord, SettlementCommitter
from payout_engine.services.idempotency import IdempotencyGuard
from payout_engine.services.readers import LedgerReader
from payout_engine.services.state_machine import SettlementStateMachine, SettlementStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FailedFarmer:
    """A farmer whose settlement did not go through."""

    farmer_id: UUID
    reason: str
    code: str

    @classmethod
    def from_error(cls, farmer_id: UUID, error: Exception) -> FailedFarmer:
        return cls(
            farmer_id=farmer_id,
            reason=str(error),
            code=getattr(error, "code", "UNEXPECTED_ERROR"),
        )


@dataclass(frozen=True)
class SkippedFarmer:
    """A farmer already settled for the period."""

    farmer_id: UUID
    payout_id: UUID | None = None


@dataclass
class PreviewReport:
    """Read-only breakdowns for every farmer with deliveries in the period."""

    period: str
    rate_per_liter: Decimal
    results: list[Breakdown] = field(default_factory=list)
    failed: list[FailedFarmer] = field(default_factory=list)


@dataclass
class CommitReport:
    """Outcome of a commit batch."""

    period: str
    rate_per_liter: Decimal
    committed: list[PayoutRecord] = field(default_factory=list)
    skipped: list[SkippedFarmer] = field(default_factory=list)
    failed: list[FailedFarmer] = field(default_factory=list)
    not_attempted: list[UUID] = field(default_factory=list)
    cancelled: bool = False

    @property
    def counts(self) -> dict[str, int]:
        return {
            "committed": len(self.committed),
            "skipped": len(self.skipped),
            "failed": len(self.failed),
            "not_attempted": len(self.not_attempted),
        }


@dataclass
class _Outcome:
    state: SettlementStateMachine
    record: PayoutRecord | None = None
    skipped: SkippedFarmer | None = None
    failure: FailedFarmer | None = None


class SettlementOrchestrator:
    """Runs the calculator (and in commit mode the committer) per farmer.

    Operations:
    - preview: compute breakdowns, no writes
    - commit: compute and apply breakdowns, one transaction per farmer
    - list_payouts: read stored payout records

    Per-farmer failures never abort a batch. Period and rate are validated
    before any data is read.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        emitter: AsyncEventEmitter | None = None,
        settings: Settings | None = None,
        calculator: SettlementCalculator | None = None,
    ):
        self.session_factory = session_factory
        self.emitter = emitter
        self.settings = settings or get_settings()
        self.calculator = calculator or SettlementCalculator(
            active_accounts_only=self.settings.contributions_active_accounts_only
        )
        self.committer = SettlementCommitter(session_factory, emitter, self.settings)

    # === Preview ===

    async def preview(self, period: str | Period, rate: Any) -> PreviewReport:
        """Compute every farmer's breakdown for ``period`` without writing."""
        parsed = period if isinstance(period, Period) else Period.parse(period)
        rate_per_liter = parse_rate(rate)
        start, end = parsed.bounds(self.settings.settlement_timezone)

        report = PreviewReport(period=parsed.label, rate_per_liter=rate_per_liter)
        async with self.session_factory() as session:
            reader = LedgerReader(session)
            for farmer_id in await reader.farmer_ids_with_deliveries(start, end):
                try:
                    breakdown = await self._breakdown(
                        reader, farmer_id, parsed, rate_per_liter, start, end
                    )
                except FarmerSettlementError as e:
                    report.failed.append(FailedFarmer.from_error(farmer_id, e))
                    continue
                report.results.append(breakdown)

        logger.info(
            "Previewed %s at %s: %d farmer(s), %d failed",
            parsed.label,
            rate_per_liter,
            len(report.results),
            len(report.failed),
        )
        return report

    # === Commit ===

    async def commit(
        self,
        period: str | Period,
        rate: Any,
        actor_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CommitReport:
        """Settle every farmer with deliveries in ``period``.

        Already-settled farmers are skipped; a farmer that fails is recorded
        and the batch moves on. When ``cancel_event`` is set, farmers not yet
        started are reported as not attempted; in-flight farmers finish or
        roll back.
        """
        parsed = period if isinstance(period, Period) else Period.parse(period)
        rate_per_liter = parse_rate(rate)
        start, end = parsed.bounds(self.settings.settlement_timezone)
        correlation_id = uuid4()
        cancel_event = cancel_event or asyncio.Event()

        async with self.session_factory() as session:
            farmer_ids = await LedgerReader(session).farmer_ids_with_deliveries(start, end)
            settled = await IdempotencyGuard(session).settled_farmer_ids(parsed.label)

        logger.info(
            "Committing %s at %s for %d farmer(s) (%d already settled)",
            parsed.label,
            rate_per_liter,
            len(farmer_ids),
            len(settled),
        )

        semaphore = asyncio.Semaphore(self.settings.max_concurrency)
        outcomes: dict[UUID, _Outcome] = {}
        pending: list[UUID] = []

        for farmer_id in farmer_ids:
            state = SettlementStateMachine(farmer_id, parsed.label)
            outcomes[farmer_id] = _Outcome(state=state)
            if farmer_id in settled:
                state.transition_to(SettlementStatus.SKIPPED)
                outcomes[farmer_id].skipped = SkippedFarmer(farmer_id, settled[farmer_id])
            else:
                pending.append(farmer_id)

        async def worker(farmer_id: UUID) -> None:
            async with semaphore:
                if cancel_event.is_set():
                    return
                await self._settle_one(
                    outcomes[farmer_id],
                    parsed,
                    rate_per_liter,
                    start,
                    end,
                    correlation_id,
                    actor_id,
                )

        await asyncio.gather(*(worker(farmer_id) for farmer_id in pending))

        report = CommitReport(
            period=parsed.label,
            rate_per_liter=rate_per_liter,
            cancelled=cancel_event.is_set(),
        )
        for farmer_id in farmer_ids:
            outcome = outcomes[farmer_id]
            if outcome.record is not None:
                report.committed.append(outcome.record)
            elif outcome.skipped is not None:
                report.skipped.append(outcome.skipped)
            elif outcome.failure is not None:
                report.failed.append(outcome.failure)
            else:
                report.not_attempted.append(farmer_id)

        logger.info(
            "Commit of %s finished: %s%s",
            parsed.label,
            report.counts,
            " (cancelled)" if report.cancelled else "",
        )
        self._publish_batch(report, correlation_id, actor_id)
        return report

    async def _settle_one(
        self,
        outcome: _Outcome,
        period: Period,
        rate_per_liter: Decimal,
        start: datetime,
        end: datetime,
        correlation_id: UUID,
        actor_id: str | None,
    ) -> None:
        state = outcome.state
        farmer_id = state.farmer_id
        try:
            async with self.session_factory() as session:
                breakdown = await self._breakdown(
                    LedgerReader(session), farmer_id, period, rate_per_liter, start, end
                )
            state.transition_to(SettlementStatus.CALCULATED)
            outcome.record = await self.committer.commit(
                farmer_id,
                period.label,
                breakdown,
                correlation_id=correlation_id,
                actor_id=actor_id,
            )
            state.transition_to(SettlementStatus.COMMITTED)
        except AlreadySettled as e:
            logger.info("Farmer %s already settled for %s, skipping", farmer_id, period)
            state.transition_to(SettlementStatus.SKIPPED)
            outcome.skipped = SkippedFarmer(farmer_id, e.payout_id)
        except (FarmerSettlementError, InvalidRate) as e:
            logger.warning("Settlement failed for farmer %s: %s", farmer_id, e)
            state.transition_to(SettlementStatus.FAILED)
            outcome.failure = FailedFarmer.from_error(farmer_id, e)
        except Exception as e:
            logger.exception("Unexpected error settling farmer %s for %s", farmer_id, period)
            state.transition_to(SettlementStatus.FAILED)
            outcome.failure = FailedFarmer.from_error(farmer_id, e)

    async def _breakdown(
        self,
        reader: LedgerReader,
        farmer_id: UUID,
        period: Period,
        rate_per_liter: Decimal,
        start: datetime,
        end: datetime,
    ) -> Breakdown:
        """Shared by preview and commit so both see the same numbers."""
        farmer = await reader.get_farmer(farmer_id)
        if farmer is None:
            raise FarmerNotFound(farmer_id, period.label)
        deliveries = await reader.deliveries_for(farmer_id, start, end)
        accounts = await reader.accounts_for(farmer_id)
        loans = await reader.loans_for(farmer_id)
        return self.calculator.compute(
            farmer_id, period, rate_per_liter, deliveries, accounts, loans
        )

    def _publish_batch(
        self, report: CommitReport, correlation_id: UUID, actor_id: str | None
    ) -> None:
        if self.emitter is None:
            return
        event = PayoutBatchCompleted(
            metadata=EventMetadata.create(
                correlation_id=correlation_id,
                actor_id=actor_id,
                actor_type="user" if actor_id else "system",
            ),
            period=report.period,
            committed_count=len(report.committed),
            skipped_count=len(report.skipped),
            failed_count=len(report.failed),
            cancelled=report.cancelled,
        )
        self.emitter.dispatch(event)

    # === Queries ===

    async def list_payouts(
        self,
        period: str | None = None,
        farmer_id: UUID | None = None,
        limit: int | None = None,
    ) -> list[Payout]:
        """Stored payout records, newest first."""
        label = Period.parse(period).label if period else None
        async with self.session_factory() as session:
            return await LedgerReader(session).list_payouts(label, farmer_id, limit)
