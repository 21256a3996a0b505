"""API routes."""

from payout_engine.api.routes.health import router as health_router
from payout_engine.api.routes.payouts import router as payouts_router

__all__ = ["payouts_router", "health_router"]
