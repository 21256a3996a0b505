"""Pydantic schemas for API request/response models.

Field names are exposed in camelCase to match the presentation layer.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from payout_engine.calculators import AccountLine, Breakdown, LoanLine
from payout_engine.services import (
    CommitReport,
    FailedFarmer,
    PayoutRecord,
    PreviewReport,
    SkippedFarmer,
)


class CamelModel(BaseModel):
    """Base schema serialized with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ============================================================================
# Shared
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None


class FailedFarmerResponse(CamelModel):
    farmer_id: UUID
    reason: str
    code: str

    @classmethod
    def from_failure(cls, failure: FailedFarmer) -> "FailedFarmerResponse":
        return cls(farmer_id=failure.farmer_id, reason=failure.reason, code=failure.code)


# ============================================================================
# Preview schemas
# ============================================================================


class AccountLineResponse(CamelModel):
    account_id: UUID
    account_number: str
    account_name: str
    current_balance: Decimal
    monthly_contribution: Decimal
    contribution: Decimal


class LoanLineResponse(CamelModel):
    loan_id: UUID
    loan_no: str | None = None
    amount: Decimal
    term_months: int
    repaid_amount: Decimal
    monthly_installment: Decimal
    remaining: Decimal
    deduction: Decimal


class FarmerPreview(CamelModel):
    """One farmer's breakdown as shown before committing."""

    farmer_id: UUID
    delivery_count: int
    total_qty: Decimal
    gross: Decimal
    total_loan_deductions: Decimal
    total_contributions: Decimal
    net_amount: Decimal
    accounts: list[AccountLineResponse]
    loans: list[LoanLineResponse]

    @classmethod
    def from_breakdown(cls, breakdown: Breakdown) -> "FarmerPreview":
        return cls(
            farmer_id=breakdown.farmer_id,
            delivery_count=breakdown.delivery_count,
            total_qty=breakdown.total_qty,
            gross=breakdown.gross,
            total_loan_deductions=breakdown.total_loan_deductions,
            total_contributions=breakdown.total_contributions,
            net_amount=breakdown.net_amount,
            accounts=[_account_line(a) for a in breakdown.accounts],
            loans=[_loan_line(l) for l in breakdown.loans],
        )


def _account_line(line: AccountLine) -> AccountLineResponse:
    return AccountLineResponse.model_validate(line)


def _loan_line(line: LoanLine) -> LoanLineResponse:
    return LoanLineResponse.model_validate(line)


class PreviewResponse(CamelModel):
    period: str
    rate: Decimal
    results: list[FarmerPreview]
    failed: list[FailedFarmerResponse]

    @classmethod
    def from_report(cls, report: PreviewReport) -> "PreviewResponse":
        return cls(
            period=report.period,
            rate=report.rate_per_liter,
            results=[FarmerPreview.from_breakdown(b) for b in report.results],
            failed=[FailedFarmerResponse.from_failure(f) for f in report.failed],
        )


# ============================================================================
# Commit schemas
# ============================================================================


class ProcessPayoutsRequest(CamelModel):
    """Commit request. ``period`` wins over ``year``/``month`` when both are sent.

    ``rate``, ``year`` and ``month`` are left untyped so that an unusable
    value is reported as an invalid rate or period rather than a schema error.
    """

    period: str | None = None
    year: Any = None
    month: Any = None
    rate: Any = None


class CommittedPayoutResponse(CamelModel):
    farmer_id: UUID
    payout_id: UUID
    total_qty: Decimal
    total_amount: Decimal
    total_loan_deductions: Decimal
    total_contributions: Decimal
    net_amount: Decimal

    @classmethod
    def from_record(cls, record: PayoutRecord) -> "CommittedPayoutResponse":
        return cls.model_validate(record)


class SkippedFarmerResponse(CamelModel):
    farmer_id: UUID
    payout_id: UUID | None = None

    @classmethod
    def from_skipped(cls, skipped: SkippedFarmer) -> "SkippedFarmerResponse":
        return cls(farmer_id=skipped.farmer_id, payout_id=skipped.payout_id)


class ProcessPayoutsResponse(CamelModel):
    period: str
    rate: Decimal
    results: list[CommittedPayoutResponse]
    committed: list[UUID]
    skipped: list[SkippedFarmerResponse]
    failed: list[FailedFarmerResponse]
    not_attempted: list[UUID]
    cancelled: bool
    counts: dict[str, int]

    @classmethod
    def from_report(cls, report: CommitReport) -> "ProcessPayoutsResponse":
        return cls(
            period=report.period,
            rate=report.rate_per_liter,
            results=[CommittedPayoutResponse.from_record(r) for r in report.committed],
            committed=[r.farmer_id for r in report.committed],
            skipped=[SkippedFarmerResponse.from_skipped(s) for s in report.skipped],
            failed=[FailedFarmerResponse.from_failure(f) for f in report.failed],
            not_attempted=report.not_attempted,
            cancelled=report.cancelled,
            counts=report.counts,
        )


# ============================================================================
# Payout history
# ============================================================================


class PayoutResponse(CamelModel):
    """Stored payout record."""

    payout_id: UUID
    farmer_id: UUID
    period: str
    rate_per_liter: Decimal
    total_milk_quantity: Decimal
    total_milk_amount: Decimal
    total_loan_deductions: Decimal
    total_contributions: Decimal
    net_amount: Decimal
    lines: dict[str, Any]
    engine_version: str
    created_at: datetime | None = None


class PayoutListResponse(CamelModel):
    items: list[PayoutResponse]
    total: int
