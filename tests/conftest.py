"""Pytest fixtures for payout engine tests."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from payout_engine.config import Settings
from payout_engine.database import create_schema, make_session_factory
from payout_engine.events import AsyncEventEmitter
from payout_engine.models import Account, Delivery, Farmer, Loan

# In-memory SQLite shared across sessions through a single static connection
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

PERIOD = "2025-11"
MID_PERIOD = datetime(2025, 11, 15, 6, 30, tzinfo=timezone.utc)
RATE = Decimal("50")


def make_settings(**overrides) -> Settings:
    values = dict(
        database_url=TEST_DATABASE_URL,
        engine_version="test",
        host="127.0.0.1",
        port=8000,
        debug=False,
        log_level="DEBUG",
        settlement_timezone="Africa/Nairobi",
        max_concurrency=1,
        commit_timeout_seconds=30.0,
        contributions_active_accounts_only=False,
        currency="KES",
        admin_role="admin",
        sms_provider="mock",
        sms_api_url=None,
        sms_api_key=None,
        sms_sender_id="COOP",
        sms_timeout_seconds=10.0,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine with a fresh schema."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Session for assertions after the code under test has committed."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def emitter(engine: AsyncEngine) -> AsyncGenerator[AsyncEventEmitter, None]:
    """Emitter whose background dispatches finish before the engine goes away."""
    emitter = AsyncEventEmitter()
    yield emitter
    await emitter.drain()


class LedgerSeeder:
    """Writes member and ledger rows, each in its own committed transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self._members = 0

    async def _save(self, obj):
        async with self.session_factory() as session:
            async with session.begin():
                session.add(obj)
        return obj

    async def farmer(self, first_name: str = "Jane", surname: str = "Wanjiku", **kwargs) -> Farmer:
        self._members += 1
        kwargs.setdefault("member_no", f"M{self._members:04d}")
        kwargs.setdefault("phone", f"+2547000000{self._members:02d}")
        return await self._save(
            Farmer(first_name=first_name, surname=surname, **kwargs)
        )

    async def delivery(
        self,
        farmer: Farmer,
        quantity: str | Decimal,
        delivered_at: datetime = MID_PERIOD,
        price_per_liter: str | Decimal = "45",
    ) -> Delivery:
        return await self._save(
            Delivery.capture(
                farmer_id=farmer.farmer_id,
                delivered_at=delivered_at,
                quantity=Decimal(quantity),
                price_per_liter=Decimal(price_per_liter),
            )
        )

    async def account(
        self,
        farmer: Farmer,
        monthly_contribution: str | Decimal = "0",
        balance: str | Decimal = "0",
        status: str = "active",
        account_number: str | None = None,
        account_type: str = "Savings",
    ) -> Account:
        return await self._save(
            Account(
                farmer_id=farmer.farmer_id,
                account_number=account_number or f"{farmer.member_no}-SAV",
                account_name=f"Savings - {farmer.display_name}",
                balance=Decimal(balance),
                monthly_contribution=Decimal(monthly_contribution),
                status=status,
                account_type=account_type,
            )
        )

    async def loan(
        self,
        farmer: Farmer,
        amount: str | Decimal,
        term_months: int,
        repaid_amount: str | Decimal = "0",
        status: str = "disbursed",
    ) -> Loan:
        return await self._save(
            Loan(
                farmer_id=farmer.farmer_id,
                amount=Decimal(amount),
                term_months=term_months,
                repaid_amount=Decimal(repaid_amount),
                status=status,
            )
        )


@pytest.fixture
def seed(session_factory: async_sessionmaker[AsyncSession]) -> LedgerSeeder:
    return LedgerSeeder(session_factory)


@pytest.fixture
async def scenario_a(seed: LedgerSeeder) -> dict:
    """100 L delivered, one 1200/12 loan, one 200/month savings account."""
    farmer = await seed.farmer()
    await seed.delivery(farmer, "60")
    await seed.delivery(farmer, "40")
    loan = await seed.loan(farmer, "1200", 12)
    account = await seed.account(farmer, monthly_contribution="200", balance="1000")
    return {"farmer": farmer, "loan": loan, "account": account}
