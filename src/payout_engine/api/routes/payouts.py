"""Payout settlement endpoints."""

from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Query, status

from payout_engine.api.dependencies import AdminActor, Orchestrator
from payout_engine.api.schemas import (
    ErrorResponse,
    PayoutListResponse,
    PayoutResponse,
    PreviewResponse,
    ProcessPayoutsRequest,
    ProcessPayoutsResponse,
)
from payout_engine.calculators import Period
from payout_engine.exceptions import InvalidPeriod

router = APIRouter(prefix="/payouts", tags=["payouts"])


@router.get(
    "/preview",
    response_model=PreviewResponse,
    responses={400: {"model": ErrorResponse}},
)
async def preview_payouts(
    orchestrator: Orchestrator,
    period: str | None = None,
    rate: str | None = None,
) -> PreviewResponse:
    """Compute every farmer's breakdown for a period without writing anything."""
    report = await orchestrator.preview(period, rate)
    return PreviewResponse.from_report(report)


@router.post(
    "/process",
    response_model=ProcessPayoutsResponse,
    status_code=status.HTTP_200_OK,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def process_payouts(
    orchestrator: Orchestrator,
    actor_id: AdminActor,
    payload: ProcessPayoutsRequest | None = None,
    period: Annotated[str | None, Query()] = None,
    rate: Annotated[str | None, Query()] = None,
) -> ProcessPayoutsResponse:
    """Commit payouts for a period.

    ``?period=`` and ``?rate=`` take precedence over the body. Farmers already
    settled are skipped, so a retried request never pays twice.
    """
    payload = payload or ProcessPayoutsRequest()
    resolved = Period.parse(period) if period else _resolve_period(payload)
    report = await orchestrator.commit(
        resolved, rate if rate is not None else payload.rate, actor_id=actor_id
    )
    return ProcessPayoutsResponse.from_report(report)


@router.get(
    "",
    response_model=PayoutListResponse,
    responses={400: {"model": ErrorResponse}},
)
async def list_payouts(
    orchestrator: Orchestrator,
    period: str | None = None,
    farmer_id: Annotated[UUID | None, Query(alias="farmerId")] = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 200,
) -> PayoutListResponse:
    """Stored payout records, newest first."""
    payouts = await orchestrator.list_payouts(period, farmer_id, limit)
    return PayoutListResponse(
        items=[PayoutResponse.model_validate(p) for p in payouts],
        total=len(payouts),
    )


def _resolve_period(payload: ProcessPayoutsRequest) -> Period:
    if payload.period:
        return Period.parse(payload.period)
    if payload.year is not None and payload.month is not None:
        return Period.from_year_month(
            _period_part(payload.year, payload), _period_part(payload.month, payload)
        )
    raise InvalidPeriod(payload.period, "missing")


def _period_part(value: Any, payload: ProcessPayoutsRequest) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    raise InvalidPeriod(f"{payload.year}-{payload.month}", "year and month must be integers")
