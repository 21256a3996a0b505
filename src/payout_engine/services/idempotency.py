"""Idempotency guard for (farmer, period) settlements.

Key invariants:
1. One payout per (farmer_id, period) (enforced by unique constraint)
2. The existence check is advisory; the insert is the real claim
3. A unique violation on the claim is reported as AlreadySettled, never
   as a generic failure, so a racing duplicate run skips the farmer
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from payout_engine.exceptions import AlreadySettled, PersistenceFailure
from payout_engine.models import Payout

PAYOUT_UNIQUE_CONSTRAINT = "payout_farmer_period_unique"


def is_payout_conflict(error: IntegrityError) -> bool:
    """True if the integrity error is the (farmer, period) unique violation."""
    message = str(error.orig) if error.orig is not None else str(error)
    return (
        PAYOUT_UNIQUE_CONSTRAINT in message
        # SQLite reports the columns instead of the constraint name
        or "payout.farmer_id, payout.period" in message
    )


class IdempotencyGuard:
    """Tracks which (farmer, period) pairs are already committed."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def existing_payout_id(self, farmer_id: UUID, period: str) -> UUID | None:
        result = await self.session.execute(
            select(Payout.payout_id).where(
                Payout.farmer_id == farmer_id,
                Payout.period == period,
            )
        )
        return result.scalar_one_or_none()

    async def settled_farmer_ids(self, period: str) -> dict[UUID, UUID]:
        """Map of farmer_id -> payout_id for every farmer settled in ``period``."""
        result = await self.session.execute(
            select(Payout.farmer_id, Payout.payout_id).where(Payout.period == period)
        )
        return {farmer_id: payout_id for farmer_id, payout_id in result.all()}

    async def ensure_not_settled(self, farmer_id: UUID, period: str) -> None:
        """Raise AlreadySettled if a payout exists for (farmer, period)."""
        payout_id = await self.existing_payout_id(farmer_id, period)
        if payout_id is not None:
            raise AlreadySettled(farmer_id, period, payout_id)

    async def claim(self, payout: Payout) -> Payout:
        """Insert the payout row, claiming (farmer, period).

        Must run inside the farmer's transaction; on conflict the caller's
        transaction is rolled back as the exception propagates.
        """
        self.session.add(payout)
        try:
            await self.session.flush()
        except IntegrityError as e:
            if is_payout_conflict(e):
                raise AlreadySettled(payout.farmer_id, payout.period) from e
            raise PersistenceFailure(
                payout.farmer_id, payout.period, f"payout insert rejected: {e.orig}"
            ) from e
        return payout
