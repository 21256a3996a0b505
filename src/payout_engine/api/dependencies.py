"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from payout_engine.config import Settings
from payout_engine.services.orchestrator import SettlementOrchestrator


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_orchestrator(request: Request) -> SettlementOrchestrator:
    return request.app.state.orchestrator


async def require_admin(
    settings: Annotated[Settings, Depends(get_app_settings)],
    x_actor_role: Annotated[str | None, Header()] = None,
    x_actor_id: Annotated[str | None, Header()] = None,
) -> str | None:
    """Gate for ledger-mutating endpoints; returns the caller's actor id."""
    if not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="X-Actor-Role header is required",
        )
    if x_actor_role.lower() != settings.admin_role.lower():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return x_actor_id


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Orchestrator = Annotated[SettlementOrchestrator, Depends(get_orchestrator)]
AdminActor = Annotated[str | None, Depends(require_admin)]
