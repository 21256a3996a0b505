"""Type definitions for the settlement calculation pipeline."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from payout_engine.exceptions import InvalidPeriod

_PERIOD_RE = re.compile(r"^(\d{4})-(\d{2})$")


class LoanStatus(str, Enum):
    """Loan status values."""

    APPLIED = "applied"
    DISBURSED = "disbursed"
    REPAID = "repaid"
    OVERDUE = "overdue"


class AccountStatus(str, Enum):
    """Account status values."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    CLOSED = "closed"


@dataclass(frozen=True, order=True)
class Period:
    """A calendar month identifying one settlement run."""

    year: int
    month: int

    @classmethod
    def parse(cls, value: object) -> Period:
        """Parse a ``YYYY-MM`` string, raising InvalidPeriod otherwise."""
        if not isinstance(value, str) or not value.strip():
            raise InvalidPeriod(value, "missing")
        match = _PERIOD_RE.match(value.strip())
        if match is None:
            raise InvalidPeriod(value)
        return cls.from_year_month(int(match.group(1)), int(match.group(2)))

    @classmethod
    def from_year_month(cls, year: int, month: int) -> Period:
        if not 1 <= month <= 12:
            raise InvalidPeriod(f"{year}-{month}", "month must be 01-12")
        if not 1 <= year <= 9998:
            raise InvalidPeriod(f"{year}-{month}", "year out of range")
        return cls(year, month)

    @property
    def label(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def next(self) -> Period:
        if self.month == 12:
            return Period(self.year + 1, 1)
        return Period(self.year, self.month + 1)

    def bounds(self, tz_name: str = "UTC") -> tuple[datetime, datetime]:
        """Half-open ``[start, end)`` interval in UTC.

        Month boundaries are midnight in the reference timezone, so preview
        and commit see exactly the same deliveries.
        """
        try:
            tz = ZoneInfo(tz_name)
        except ZoneInfoNotFoundError as e:
            raise ValueError(f"Unknown timezone {tz_name!r}") from e
        following = self.next()
        start = datetime(self.year, self.month, 1, tzinfo=tz)
        end = datetime(following.year, following.month, 1, tzinfo=tz)
        return start.astimezone(timezone.utc), end.astimezone(timezone.utc)

    def __str__(self) -> str:
        return self.label


@dataclass(frozen=True)
class DeliveryInput:
    """A delivery as seen by the calculator."""

    quantity: Decimal
    amount: Decimal = Decimal("0")


@dataclass(frozen=True)
class AccountInput:
    """Snapshot of an account at calculation time."""

    account_id: UUID
    account_number: str
    account_name: str
    balance: Decimal
    monthly_contribution: Decimal
    status: str = AccountStatus.ACTIVE.value
    account_type: str = "Savings"


@dataclass(frozen=True)
class LoanInput:
    """Snapshot of a loan at calculation time."""

    loan_id: UUID
    amount: Decimal
    term_months: int
    repaid_amount: Decimal
    status: str = LoanStatus.DISBURSED.value
    loan_no: str | None = None


@dataclass(frozen=True)
class AccountLine:
    """Per-account contribution detail."""

    account_id: UUID
    account_number: str
    account_name: str
    current_balance: Decimal
    monthly_contribution: Decimal
    contribution: Decimal  # Amount credited to the account on commit

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": str(self.account_id),
            "account_number": self.account_number,
            "account_name": self.account_name,
            "current_balance": str(self.current_balance),
            "monthly_contribution": str(self.monthly_contribution),
            "contribution": str(self.contribution),
        }


@dataclass(frozen=True)
class LoanLine:
    """Per-loan deduction detail."""

    loan_id: UUID
    loan_no: str | None
    amount: Decimal
    term_months: int
    repaid_amount: Decimal  # Snapshot the committer checks against
    monthly_installment: Decimal
    remaining: Decimal
    deduction: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "loan_id": str(self.loan_id),
            "loan_no": self.loan_no,
            "amount": str(self.amount),
            "term_months": self.term_months,
            "repaid_amount": str(self.repaid_amount),
            "monthly_installment": str(self.monthly_installment),
            "remaining": str(self.remaining),
            "deduction": str(self.deduction),
        }


@dataclass(frozen=True)
class Breakdown:
    """Settlement breakdown for one farmer in one period.

    Conservation holds exactly: gross - total_loan_deductions
    - total_contributions == net_amount.
    """

    farmer_id: UUID
    period: str
    rate_per_liter: Decimal
    delivery_count: int
    total_qty: Decimal
    recorded_amount: Decimal  # Sum of amounts captured on the deliveries
    gross: Decimal
    total_loan_deductions: Decimal
    total_contributions: Decimal
    net_amount: Decimal
    accounts: tuple[AccountLine, ...] = field(default_factory=tuple)
    loans: tuple[LoanLine, ...] = field(default_factory=tuple)

    @property
    def contributing_accounts(self) -> tuple[AccountLine, ...]:
        return tuple(a for a in self.accounts if a.contribution > 0)

    @property
    def deducted_loans(self) -> tuple[LoanLine, ...]:
        return tuple(l for l in self.loans if l.deduction > 0)

    def lines_snapshot(self) -> dict[str, Any]:
        """JSON-ready snapshot stored on the payout record."""
        return {
            "rate_per_liter": str(self.rate_per_liter),
            "delivery_count": self.delivery_count,
            "recorded_amount": str(self.recorded_amount),
            "accounts": [a.to_dict() for a in self.accounts],
            "loans": [l.to_dict() for l in self.loans],
        }
