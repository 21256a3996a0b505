"""Atomic, exactly-once commit of a settlement breakdown."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payout_engine.calculators.types import Breakdown, LoanStatus
from payout_engine.config import Settings, get_settings
from payout_engine.events import AsyncEventEmitter, EventMetadata, PayoutCommitted
from payout_engine.exceptions import (
    AlreadySettled,
    FarmerNotFound,
    FarmerSettlementError,
    PersistenceFailure,
    StaleBreakdown,
)
from payout_engine.models import Account, AccountType, Farmer, Loan, Payout
from payout_engine.services.idempotency import IdempotencyGuard

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PayoutRecord:
    """Result of committing one farmer's breakdown."""

    payout_id: UUID
    farmer_id: UUID
    period: str
    total_qty: Decimal
    total_amount: Decimal
    total_loan_deductions: Decimal
    total_contributions: Decimal
    net_amount: Decimal
    payout_account_id: UUID


class SettlementCommitter:
    """Applies a computed breakdown durably, exactly once per (farmer, period).

    One transaction per farmer covers:
    (a) crediting each contributing account by its contribution
    (b) advancing each deducted loan's repaid amount
    (c) inserting the payout record verbatim from the breakdown
    (d) crediting the farmer's payout account by the net amount

    Either all four apply or none do. Loan updates are conditional on the
    repaid amount the breakdown was computed from, so a stale breakdown is
    rejected instead of over-collecting.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        emitter: AsyncEventEmitter | None = None,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.emitter = emitter
        self.settings = settings or get_settings()

    async def commit(
        self,
        farmer_id: UUID,
        period: str,
        breakdown: Breakdown,
        correlation_id: UUID | None = None,
        actor_id: str | None = None,
    ) -> PayoutRecord:
        """Commit ``breakdown`` for (farmer, period).

        Raises:
            AlreadySettled: a payout already exists for the pair
            FarmerNotFound: the farmer is not in the member directory
            PersistenceFailure: storage error or timeout; nothing was applied
        """
        if breakdown.farmer_id != farmer_id or breakdown.period != period:
            raise ValueError(
                f"Breakdown for {breakdown.farmer_id}/{breakdown.period} "
                f"cannot be committed as {farmer_id}/{period}"
            )

        try:
            record = await asyncio.wait_for(
                self._apply(farmer_id, period, breakdown),
                timeout=self.settings.commit_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise PersistenceFailure(
                farmer_id,
                period,
                f"commit timed out after {self.settings.commit_timeout_seconds}s",
            ) from e

        logger.info(
            "Committed payout %s for farmer %s period %s (net %s)",
            record.payout_id,
            farmer_id,
            period,
            record.net_amount,
        )
        self._publish(record, correlation_id, actor_id)
        return record

    async def _apply(
        self, farmer_id: UUID, period: str, breakdown: Breakdown
    ) -> PayoutRecord:
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    farmer = await session.get(Farmer, farmer_id)
                    if farmer is None:
                        raise FarmerNotFound(farmer_id, period)

                    guard = IdempotencyGuard(session)
                    await guard.ensure_not_settled(farmer_id, period)
                    payout = await guard.claim(self._build_payout(breakdown))

                    await self._credit_contributions(session, breakdown)
                    await self._apply_loan_repayments(session, breakdown)
                    payout_account_id = await self._credit_payout_account(
                        session, farmer, breakdown
                    )
            except FarmerSettlementError:
                raise
            except IntegrityError as e:
                raise PersistenceFailure(
                    farmer_id, period, f"constraint violated: {e.orig}"
                ) from e
            except SQLAlchemyError as e:
                raise PersistenceFailure(farmer_id, period, str(e)) from e

        return PayoutRecord(
            payout_id=payout.payout_id,
            farmer_id=farmer_id,
            period=period,
            total_qty=breakdown.total_qty,
            total_amount=breakdown.gross,
            total_loan_deductions=breakdown.total_loan_deductions,
            total_contributions=breakdown.total_contributions,
            net_amount=breakdown.net_amount,
            payout_account_id=payout_account_id,
        )

    def _build_payout(self, breakdown: Breakdown) -> Payout:
        return Payout(
            farmer_id=breakdown.farmer_id,
            period=breakdown.period,
            rate_per_liter=breakdown.rate_per_liter,
            total_milk_quantity=breakdown.total_qty,
            total_milk_amount=breakdown.gross,
            total_loan_deductions=breakdown.total_loan_deductions,
            total_contributions=breakdown.total_contributions,
            net_amount=breakdown.net_amount,
            lines=breakdown.lines_snapshot(),
            engine_version=self.settings.engine_version,
        )

    async def _credit_contributions(
        self, session: AsyncSession, breakdown: Breakdown
    ) -> None:
        for line in breakdown.contributing_accounts:
            result = await session.execute(
                update(Account)
                .where(
                    Account.account_id == line.account_id,
                    Account.farmer_id == breakdown.farmer_id,
                )
                .values(balance=Account.balance + line.contribution)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise StaleBreakdown(
                    breakdown.farmer_id,
                    breakdown.period,
                    f"account {line.account_number} no longer exists",
                )

    async def _apply_loan_repayments(
        self, session: AsyncSession, breakdown: Breakdown
    ) -> None:
        for line in breakdown.deducted_loans:
            if line.repaid_amount + line.deduction > line.amount:
                raise StaleBreakdown(
                    breakdown.farmer_id,
                    breakdown.period,
                    f"deduction {line.deduction} exceeds remaining on loan {line.loan_id}",
                )
            # Conditional update: only applies if repaid_amount is still the
            # value the breakdown saw.
            result = await session.execute(
                update(Loan)
                .where(
                    Loan.loan_id == line.loan_id,
                    Loan.farmer_id == breakdown.farmer_id,
                    Loan.status == LoanStatus.DISBURSED.value,
                    func.round(Loan.repaid_amount, 2) == line.repaid_amount,
                )
                .values(repaid_amount=Loan.repaid_amount + line.deduction)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise StaleBreakdown(
                    breakdown.farmer_id,
                    breakdown.period,
                    f"loan {line.loan_no or line.loan_id} changed since calculation",
                )

    async def _credit_payout_account(
        self, session: AsyncSession, farmer: Farmer, breakdown: Breakdown
    ) -> UUID:
        """Find-or-create the payout account and credit it by net.

        Net may be negative; the balance then records money owed.
        """
        result = await session.execute(
            select(Account.account_id).where(
                Account.farmer_id == farmer.farmer_id,
                Account.account_type == AccountType.PAYOUT,
            )
        )
        account_id = result.scalar_one_or_none()

        if account_id is None:
            account = Account(
                farmer_id=farmer.farmer_id,
                account_number=f"{farmer.member_no or farmer.farmer_id}-PAYOUT",
                account_name=f"Payout Account - {farmer.display_name}",
                balance=breakdown.net_amount,
                monthly_contribution=Decimal("0"),
                currency=self.settings.currency,
                account_type=AccountType.PAYOUT,
                status="active",
            )
            session.add(account)
            await session.flush()
            return account.account_id

        await session.execute(
            update(Account)
            .where(Account.account_id == account_id)
            .values(balance=Account.balance + breakdown.net_amount)
            .execution_options(synchronize_session=False)
        )
        return account_id

    def _publish(
        self,
        record: PayoutRecord,
        correlation_id: UUID | None,
        actor_id: str | None,
    ) -> None:
        """Hand PayoutCommitted to the emitter without waiting on handlers."""
        if self.emitter is None:
            return
        event = PayoutCommitted(
            metadata=EventMetadata.create(
                correlation_id=correlation_id,
                actor_id=actor_id,
                actor_type="user" if actor_id else "system",
            ),
            payout_id=record.payout_id,
            farmer_id=record.farmer_id,
            period=record.period,
            total_qty=record.total_qty,
            gross=record.total_amount,
            total_loan_deductions=record.total_loan_deductions,
            total_contributions=record.total_contributions,
            net_amount=record.net_amount,
            currency=self.settings.currency,
        )
        self.emitter.dispatch(event)


__all__ = ["AlreadySettled", "PayoutRecord", "SettlementCommitter"]
