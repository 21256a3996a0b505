"""Service probes for the settlement API."""

import logging
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payout_engine.api.dependencies import DbSession, get_app_settings
from payout_engine.api.schemas import CamelModel
from payout_engine.config import Settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(CamelModel):
    """Probe result with the settings a settlement run depends on."""

    status: str
    timestamp: datetime
    database: str
    engine_version: str
    settlement_timezone: str
    sms_provider: str
    pending_notifications: int


async def _database_reachable(db: AsyncSession) -> bool:
    try:
        await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError):
        logger.warning("Ledger database unreachable", exc_info=True)
        return False
    return True


@router.get("/health", response_model=HealthResponse)
async def health_check(
    request: Request,
    db: DbSession,
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> HealthResponse:
    """Ledger connectivity plus the backlog of undelivered payout notifications."""
    reachable = await _database_reachable(db)
    return HealthResponse(
        status="healthy" if reachable else "degraded",
        timestamp=datetime.now(timezone.utc),
        database="healthy" if reachable else "unhealthy",
        engine_version=settings.engine_version,
        settlement_timezone=settings.settlement_timezone,
        sms_provider=settings.sms_provider,
        pending_notifications=request.app.state.emitter.pending,
    )


@router.get("/ready", responses={503: {"description": "Ledger database unreachable"}})
async def readiness_check(db: DbSession) -> JSONResponse:
    """Ready once settlements can reach the ledger."""
    if not await _database_reachable(db):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unavailable"},
        )
    return JSONResponse(content={"status": "ready"})


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    return {"status": "alive"}
