"""Settlement calculator - pure breakdown of one farmer's month."""

from __future__ import annotations

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from uuid import UUID

from payout_engine.calculators.types import (
    AccountInput,
    AccountLine,
    AccountStatus,
    Breakdown,
    DeliveryInput,
    LoanInput,
    LoanLine,
    LoanStatus,
    Period,
)
from payout_engine.exceptions import InvalidRate

ZERO = Decimal("0")
CENTS = Decimal("0.01")

# Storage limits: rate is Numeric(12, 4), money columns Numeric(14, 2)
RATE_PLACES = 4
MAX_RATE = Decimal("100000000")
MAX_AMOUNT = Decimal("1000000000000")


def round_to_cents(amount: Decimal) -> Decimal:
    """Round to 2 decimal places, half-up."""
    return Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_rate(value: object) -> Decimal:
    """Validate a caller-supplied rate per liter.

    Raises InvalidRate when the rate is missing, non-numeric, non-finite,
    not strictly positive, or cannot be stored as a four-place rate.
    """
    if value is None or isinstance(value, bool) or (isinstance(value, str) and not value.strip()):
        raise InvalidRate(value, "missing")
    try:
        rate = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise InvalidRate(value, "not a number") from e
    if not rate.is_finite():
        raise InvalidRate(value, "not a finite number")
    if rate <= 0:
        raise InvalidRate(value, "must be greater than zero")
    if rate >= MAX_RATE:
        raise InvalidRate(value, f"must be below {MAX_RATE}")
    if rate.normalize().as_tuple().exponent < -RATE_PLACES:
        raise InvalidRate(value, f"more than {RATE_PLACES} decimal places")
    return rate


class SettlementCalculator:
    """Computes settlement breakdowns.

    Calculation pipeline (stable order per farmer):
    1) Sum delivered quantity, round to cents
    2) Gross = quantity x rate, round to cents
    3) Flat monthly contributions per account (credited to the same account)
    4) Loan installments for disbursed loans, capped by remaining principal
    5) Net = gross - loans - contributions (may be negative)

    No I/O. Identical inputs always produce an equal Breakdown, which is what
    lets preview and commit share one code path.
    """

    def __init__(self, active_accounts_only: bool = False):
        self.active_accounts_only = active_accounts_only

    def compute(
        self,
        farmer_id: UUID,
        period: Period,
        rate_per_liter: Decimal,
        deliveries: Iterable[DeliveryInput],
        accounts: Iterable[AccountInput],
        loans: Iterable[LoanInput],
    ) -> Breakdown:
        """Compute the breakdown for one farmer."""
        rate = parse_rate(rate_per_liter)

        deliveries = list(deliveries)
        total_qty = round_to_cents(sum((d.quantity for d in deliveries), ZERO))
        recorded_amount = round_to_cents(sum((d.amount for d in deliveries), ZERO))
        gross = round_to_cents(total_qty * rate)
        if gross >= MAX_AMOUNT:
            raise InvalidRate(
                rate, f"gross {gross} for {total_qty} L exceeds the largest storable amount"
            )

        account_lines = tuple(
            self.contribution_line(a)
            for a in sorted(accounts, key=lambda a: (a.account_number, str(a.account_id)))
        )
        loan_lines = tuple(
            self.loan_line(l)
            for l in sorted(loans, key=lambda l: str(l.loan_id))
            if l.status == LoanStatus.DISBURSED.value
        )

        total_contributions = round_to_cents(
            sum((a.contribution for a in account_lines), ZERO)
        )
        total_loan_deductions = round_to_cents(
            sum((l.deduction for l in loan_lines if l.deduction > 0), ZERO)
        )
        net_amount = gross - total_loan_deductions - total_contributions

        return Breakdown(
            farmer_id=farmer_id,
            period=period.label,
            rate_per_liter=rate,
            delivery_count=len(deliveries),
            total_qty=total_qty,
            recorded_amount=recorded_amount,
            gross=gross,
            total_loan_deductions=total_loan_deductions,
            total_contributions=total_contributions,
            net_amount=net_amount,
            accounts=account_lines,
            loans=loan_lines,
        )

    def contribution_line(self, account: AccountInput) -> AccountLine:
        """Flat monthly contribution for one account.

        Status is ignored unless the calculator was built with
        ``active_accounts_only``.
        """
        monthly = round_to_cents(account.monthly_contribution or ZERO)
        contribution = monthly if monthly > 0 else ZERO
        if self.active_accounts_only and account.status != AccountStatus.ACTIVE.value:
            contribution = ZERO
        return AccountLine(
            account_id=account.account_id,
            account_number=account.account_number,
            account_name=account.account_name,
            current_balance=round_to_cents(account.balance),
            monthly_contribution=monthly,
            contribution=contribution,
        )

    @staticmethod
    def monthly_installment(principal: Decimal, term_months: int) -> Decimal:
        """Flat installment ``principal / term``; zero without a term."""
        if not term_months or term_months <= 0:
            return ZERO
        return round_to_cents(Decimal(principal) / Decimal(term_months))

    @classmethod
    def loan_line(cls, loan: LoanInput) -> LoanLine:
        """Deduction for one loan: min(installment, remaining principal)."""
        principal = round_to_cents(loan.amount)
        repaid = round_to_cents(loan.repaid_amount or ZERO)
        installment = cls.monthly_installment(principal, loan.term_months)
        remaining = max(ZERO, principal - repaid)
        deduction = max(ZERO, min(installment, remaining))
        return LoanLine(
            loan_id=loan.loan_id,
            loan_no=loan.loan_no,
            amount=principal,
            term_months=loan.term_months,
            repaid_amount=repaid,
            monthly_installment=installment,
            remaining=remaining,
            deduction=deduction,
        )


def compute(
    farmer_id: UUID,
    period: Period,
    rate_per_liter: Decimal,
    deliveries: Iterable[DeliveryInput],
    accounts: Iterable[AccountInput],
    loans: Iterable[LoanInput],
    active_accounts_only: bool = False,
) -> Breakdown:
    """Functional entry point for SettlementCalculator.compute."""
    return SettlementCalculator(active_accounts_only).compute(
        farmer_id, period, rate_per_liter, deliveries, accounts, loans
    )
