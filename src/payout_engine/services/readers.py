"""Read accessors over the delivery, account, loan and payout ledgers.

Pure queries: nothing here adds, flushes or modifies rows.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payout_engine.calculators.types import (
    AccountInput,
    DeliveryInput,
    LoanInput,
    LoanStatus,
)
from payout_engine.models import Account, Delivery, Farmer, Loan, Payout


class LedgerReader:
    """Typed read accessors for one session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # === Member directory ===

    async def get_farmer(self, farmer_id: UUID) -> Farmer | None:
        return await self.session.get(Farmer, farmer_id)

    # === Deliveries ===

    async def farmer_ids_with_deliveries(
        self, period_start: datetime, period_end: datetime
    ) -> list[UUID]:
        """Distinct farmers with at least one delivery in ``[start, end)``."""
        result = await self.session.execute(
            select(Delivery.farmer_id)
            .where(
                Delivery.delivered_at >= period_start,
                Delivery.delivered_at < period_end,
            )
            .distinct()
        )
        return sorted(result.scalars().all(), key=str)

    async def deliveries_for(
        self, farmer_id: UUID, period_start: datetime, period_end: datetime
    ) -> list[DeliveryInput]:
        result = await self.session.execute(
            select(Delivery.quantity, Delivery.amount)
            .where(
                Delivery.farmer_id == farmer_id,
                Delivery.delivered_at >= period_start,
                Delivery.delivered_at < period_end,
            )
            .order_by(Delivery.delivered_at, Delivery.delivery_id)
        )
        return [DeliveryInput(quantity=q, amount=a) for q, a in result.all()]

    # === Accounts ===

    async def accounts_for(self, farmer_id: UUID) -> list[AccountInput]:
        result = await self.session.execute(
            select(Account)
            .where(Account.farmer_id == farmer_id)
            .order_by(Account.account_number)
        )
        return [
            AccountInput(
                account_id=acc.account_id,
                account_number=acc.account_number,
                account_name=acc.account_name,
                balance=acc.balance,
                monthly_contribution=acc.monthly_contribution,
                status=acc.status,
                account_type=acc.account_type,
            )
            for acc in result.scalars().all()
        ]

    # === Loans ===

    async def loans_for(
        self, farmer_id: UUID, status: str = LoanStatus.DISBURSED.value
    ) -> list[LoanInput]:
        result = await self.session.execute(
            select(Loan)
            .where(Loan.farmer_id == farmer_id, Loan.status == status)
            .order_by(Loan.loan_id)
        )
        return [
            LoanInput(
                loan_id=loan.loan_id,
                amount=loan.amount,
                term_months=loan.term_months,
                repaid_amount=loan.repaid_amount,
                status=loan.status,
                loan_no=loan.loan_no,
            )
            for loan in result.scalars().all()
        ]

    # === Payouts ===

    async def list_payouts(
        self,
        period: str | None = None,
        farmer_id: UUID | None = None,
        limit: int | None = None,
    ) -> list[Payout]:
        """Stored payouts, newest first."""
        query = select(Payout)
        if period:
            query = query.where(Payout.period == period)
        if farmer_id:
            query = query.where(Payout.farmer_id == farmer_id)
        query = query.order_by(Payout.created_at.desc(), Payout.period.desc())
        if limit:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())
