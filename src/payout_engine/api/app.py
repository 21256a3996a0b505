"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payout_engine.api.routes import health_router, payouts_router
from payout_engine.config import Settings, get_settings
from payout_engine.database import dispose_db, init_db
from payout_engine.events import AsyncEventEmitter
from payout_engine.exceptions import InvalidPeriod, InvalidRate, SettlementError
from payout_engine.services import (
    NotificationDispatcher,
    SettlementOrchestrator,
    build_sms_gateway,
)

logger = logging.getLogger(__name__)


def wire_services(
    app: FastAPI,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
) -> None:
    """Attach the session factory, emitter and orchestrator to ``app.state``."""
    emitter = AsyncEventEmitter()
    NotificationDispatcher(session_factory, build_sms_gateway(settings)).register(emitter)

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.emitter = emitter
    app.state.orchestrator = SettlementOrchestrator(
        session_factory, emitter=emitter, settings=settings
    )


def create_app(
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    When ``session_factory`` is given the app uses it as-is and leaves the
    engine lifecycle to the caller.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        owns_engine = session_factory is None
        if owns_engine:
            _, factory = init_db()
            wire_services(app, factory, settings)
        yield
        await app.state.emitter.drain()
        if owns_engine:
            await dispose_db()

    app = FastAPI(
        title="Payout Settlement Engine API",
        description="Monthly milk payout settlement for cooperative members",
        version=settings.engine_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if session_factory is not None:
        wire_services(app, session_factory, settings)

    # Exception handlers
    @app.exception_handler(InvalidPeriod)
    @app.exception_handler(InvalidRate)
    async def bad_request_handler(request: Request, exc: SettlementError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": str(exc), "code": exc.code},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    app.include_router(health_router)
    app.include_router(payouts_router, prefix="/api/v1")

    return app
