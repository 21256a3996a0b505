"""Tests for the settlement committer (atomic, exactly-once apply)."""

import asyncio
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update

from payout_engine.calculators import Period, SettlementCalculator
from payout_engine.events import PayoutCommitted
from payout_engine.exceptions import (
    AlreadySettled,
    FarmerNotFound,
    PersistenceFailure,
    StaleBreakdown,
)
from payout_engine.models import Account, AccountType, Loan, Payout
from payout_engine.services import IdempotencyGuard, LedgerReader, SettlementCommitter

from conftest import PERIOD, RATE, make_settings

pytestmark = pytest.mark.asyncio


async def breakdown_for(session_factory, farmer_id, settings, rate=RATE):
    period = Period.parse(PERIOD)
    start, end = period.bounds(settings.settlement_timezone)
    async with session_factory() as session:
        reader = LedgerReader(session)
        return SettlementCalculator().compute(
            farmer_id,
            period,
            rate,
            await reader.deliveries_for(farmer_id, start, end),
            await reader.accounts_for(farmer_id),
            await reader.loans_for(farmer_id),
        )


async def payout_count(session, farmer_id) -> int:
    return await session.scalar(
        select(func.count()).select_from(Payout).where(Payout.farmer_id == farmer_id)
    )


class TestCommitApplies:
    async def test_scenario_a_commit(self, session_factory, session, settings, scenario_a):
        farmer = scenario_a["farmer"]
        breakdown = await breakdown_for(session_factory, farmer.farmer_id, settings)

        record = await SettlementCommitter(session_factory, settings=settings).commit(
            farmer.farmer_id, PERIOD, breakdown
        )

        assert record.net_amount == Decimal("4700.00")

        payout = await session.get(Payout, record.payout_id)
        assert payout.period == PERIOD
        assert payout.total_milk_quantity == Decimal("100.00")
        assert payout.total_milk_amount == Decimal("5000.00")
        assert payout.total_loan_deductions == Decimal("100.00")
        assert payout.total_contributions == Decimal("200.00")
        assert payout.net_amount == Decimal("4700.00")
        assert payout.engine_version == "test"
        assert payout.lines["loans"][0]["deduction"] == "100.00"

        loan = await session.get(Loan, scenario_a["loan"].loan_id)
        assert loan.repaid_amount == Decimal("100.00")

        savings = await session.get(Account, scenario_a["account"].account_id)
        assert savings.balance == Decimal("1200.00")

        payout_account = await session.get(Account, record.payout_account_id)
        assert payout_account.account_type == AccountType.PAYOUT
        assert payout_account.account_number == f"{farmer.member_no}-PAYOUT"
        assert payout_account.account_name == "Payout Account - Jane Wanjiku"
        assert payout_account.balance == Decimal("4700.00")
        assert payout_account.currency == "KES"

    async def test_existing_payout_account_is_credited(self, seed, session_factory, session, settings):
        farmer = await seed.farmer()
        await seed.delivery(farmer, "10")
        existing = await seed.account(
            farmer, balance="300", account_type=AccountType.PAYOUT, account_number="P-1"
        )
        breakdown = await breakdown_for(session_factory, farmer.farmer_id, settings)

        record = await SettlementCommitter(session_factory, settings=settings).commit(
            farmer.farmer_id, PERIOD, breakdown
        )

        assert record.payout_account_id == existing.account_id
        refreshed = await session.get(Account, existing.account_id)
        assert refreshed.balance == Decimal("800.00")

    async def test_negative_net_records_negative_balance(self, seed, session_factory, session, settings):
        farmer = await seed.farmer()
        await seed.delivery(farmer, "1")
        await seed.account(farmer, monthly_contribution="200")
        breakdown = await breakdown_for(session_factory, farmer.farmer_id, settings)
        assert breakdown.net_amount == Decimal("-150.00")

        record = await SettlementCommitter(session_factory, settings=settings).commit(
            farmer.farmer_id, PERIOD, breakdown
        )

        payout_account = await session.get(Account, record.payout_account_id)
        assert payout_account.balance == Decimal("-150.00")

    async def test_emits_payout_committed_after_commit(self, session_factory, settings, emitter, scenario_a):
        farmer = scenario_a["farmer"]
        seen = []

        async def handler(event):
            # The payout must already be visible outside the committing session
            async with session_factory() as s:
                seen.append((event, await payout_count(s, farmer.farmer_id)))

        emitter.on(PayoutCommitted, handler)
        breakdown = await breakdown_for(session_factory, farmer.farmer_id, settings)
        await SettlementCommitter(session_factory, emitter, settings).commit(
            farmer.farmer_id, PERIOD, breakdown, actor_id="ops"
        )
        await emitter.drain()

        (event, visible) = seen[0]
        assert visible == 1
        assert event.farmer_id == farmer.farmer_id
        assert event.net_amount == Decimal("4700.00")
        assert event.metadata.actor_id == "ops"

    async def test_handler_failure_does_not_undo_commit(self, session_factory, session, settings, emitter, scenario_a):
        async def broken(event):
            raise RuntimeError("notifier down")

        emitter.on(PayoutCommitted, broken)
        farmer = scenario_a["farmer"]
        breakdown = await breakdown_for(session_factory, farmer.farmer_id, settings)

        record = await SettlementCommitter(session_factory, emitter, settings).commit(
            farmer.farmer_id, PERIOD, breakdown
        )

        assert await session.get(Payout, record.payout_id) is not None

    async def test_slow_handler_does_not_hold_up_commit(self, session_factory, session, settings, emitter, scenario_a):
        release = asyncio.Event()
        handled = []

        async def slow(event):
            await release.wait()
            handled.append(event.payout_id)

        emitter.on(PayoutCommitted, slow)
        farmer = scenario_a["farmer"]
        breakdown = await breakdown_for(session_factory, farmer.farmer_id, settings)

        record = await SettlementCommitter(session_factory, emitter, settings).commit(
            farmer.farmer_id, PERIOD, breakdown
        )

        assert handled == []
        assert emitter.pending == 1
        assert await session.get(Payout, record.payout_id) is not None

        release.set()
        await emitter.drain()
        assert handled == [record.payout_id]


class TestCommitRejects:
    async def test_second_commit_raises_already_settled(self, session_factory, session, settings, scenario_a):
        farmer = scenario_a["farmer"]
        committer = SettlementCommitter(session_factory, settings=settings)
        breakdown = await breakdown_for(session_factory, farmer.farmer_id, settings)
        first = await committer.commit(farmer.farmer_id, PERIOD, breakdown)

        with pytest.raises(AlreadySettled) as exc_info:
            await committer.commit(farmer.farmer_id, PERIOD, breakdown)

        assert exc_info.value.payout_id == first.payout_id
        assert await payout_count(session, farmer.farmer_id) == 1
        loan = await session.get(Loan, scenario_a["loan"].loan_id)
        assert loan.repaid_amount == Decimal("100.00")

    async def test_unique_constraint_backs_the_guard(
        self, session_factory, session, settings, scenario_a, monkeypatch
    ):
        """A racing run that passed the existence check still cannot insert twice."""
        farmer = scenario_a["farmer"]
        breakdown = await breakdown_for(session_factory, farmer.farmer_id, settings)
        await SettlementCommitter(session_factory, settings=settings).commit(
            farmer.farmer_id, PERIOD, breakdown
        )

        committer = SettlementCommitter(session_factory, settings=settings)

        async def skip_check(*args, **kwargs):
            return None

        monkeypatch.setattr(IdempotencyGuard, "ensure_not_settled", skip_check)
        with pytest.raises(AlreadySettled):
            await committer.commit(farmer.farmer_id, PERIOD, breakdown)

        assert await payout_count(session, farmer.farmer_id) == 1

    async def test_stale_loan_rolls_back_everything(self, session_factory, session, settings, scenario_a):
        farmer = scenario_a["farmer"]
        breakdown = await breakdown_for(session_factory, farmer.farmer_id, settings)

        # Another writer repays part of the loan after the breakdown was computed
        async with session_factory() as other:
            async with other.begin():
                await other.execute(
                    update(Loan)
                    .where(Loan.loan_id == scenario_a["loan"].loan_id)
                    .values(repaid_amount=Decimal("40"))
                )

        with pytest.raises(StaleBreakdown) as exc_info:
            await SettlementCommitter(session_factory, settings=settings).commit(
                farmer.farmer_id, PERIOD, breakdown
            )

        assert isinstance(exc_info.value, PersistenceFailure)
        assert await payout_count(session, farmer.farmer_id) == 0
        savings = await session.get(Account, scenario_a["account"].account_id)
        assert savings.balance == Decimal("1000.00")
        loan = await session.get(Loan, scenario_a["loan"].loan_id)
        assert loan.repaid_amount == Decimal("40.00")
        payout_accounts = await session.scalar(
            select(func.count())
            .select_from(Account)
            .where(Account.farmer_id == farmer.farmer_id, Account.account_type == AccountType.PAYOUT)
        )
        assert payout_accounts == 0

    async def test_unknown_farmer(self, session_factory, settings):
        farmer_id = uuid4()
        breakdown = SettlementCalculator().compute(farmer_id, Period.parse(PERIOD), RATE, [], [], [])
        with pytest.raises(FarmerNotFound):
            await SettlementCommitter(session_factory, settings=settings).commit(
                farmer_id, PERIOD, breakdown
            )

    async def test_mismatched_breakdown(self, session_factory, settings, scenario_a):
        breakdown = await breakdown_for(session_factory, scenario_a["farmer"].farmer_id, settings)
        with pytest.raises(ValueError):
            await SettlementCommitter(session_factory, settings=settings).commit(
                scenario_a["farmer"].farmer_id, "2025-10", breakdown
            )

    async def test_timeout_maps_to_persistence_failure(self, session_factory, session, scenario_a):
        settings = make_settings(commit_timeout_seconds=0.01)
        committer = SettlementCommitter(session_factory, settings=settings)
        farmer = scenario_a["farmer"]
        breakdown = await breakdown_for(session_factory, farmer.farmer_id, settings)

        async def slow_apply(*args):
            await asyncio.sleep(1)

        committer._apply = slow_apply
        with pytest.raises(PersistenceFailure, match="timed out"):
            await committer.commit(farmer.farmer_id, PERIOD, breakdown)
        assert await payout_count(session, farmer.farmer_id) == 0
