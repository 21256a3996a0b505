"""Settlement error taxonomy.

Batch-level errors (InvalidPeriod, InvalidRate) abort a request before any
data is read. Per-farmer errors are isolated by the orchestrator and reported
in the batch report.
"""

from __future__ import annotations

from uuid import UUID


class SettlementError(Exception):
    """Base class for settlement errors."""

    code = "SETTLEMENT_ERROR"


class InvalidPeriod(SettlementError):
    """Period string is missing or not a valid YYYY-MM month."""

    code = "INVALID_PERIOD"

    def __init__(self, value: object, reason: str | None = None):
        self.value = value
        msg = f"Invalid period {value!r}; expected YYYY-MM"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class InvalidRate(SettlementError):
    """Rate per liter is missing, non-numeric or not positive."""

    code = "INVALID_RATE"

    def __init__(self, value: object, reason: str | None = None):
        self.value = value
        msg = f"Invalid rate per liter {value!r}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class FarmerSettlementError(SettlementError):
    """Error scoped to a single farmer in a batch."""

    def __init__(self, farmer_id: UUID, period: str, message: str):
        self.farmer_id = farmer_id
        self.period = period
        super().__init__(message)


class FarmerNotFound(FarmerSettlementError):
    """Deliveries reference a farmer the member directory does not know."""

    code = "FARMER_NOT_FOUND"

    def __init__(self, farmer_id: UUID, period: str):
        super().__init__(farmer_id, period, f"Farmer {farmer_id} not found")


class AlreadySettled(FarmerSettlementError):
    """A payout already exists for (farmer, period)."""

    code = "ALREADY_SETTLED"

    def __init__(self, farmer_id: UUID, period: str, payout_id: UUID | None = None):
        self.payout_id = payout_id
        super().__init__(
            farmer_id,
            period,
            f"Farmer {farmer_id} already settled for {period}",
        )


class PersistenceFailure(FarmerSettlementError):
    """Storage error inside a farmer's unit of work. Nothing was applied."""

    code = "PERSISTENCE_FAILURE"

    def __init__(self, farmer_id: UUID, period: str, reason: str):
        self.reason = reason
        super().__init__(
            farmer_id,
            period,
            f"Settlement of farmer {farmer_id} for {period} rolled back: {reason}",
        )


class StaleBreakdown(PersistenceFailure):
    """Ledger rows changed between calculation and commit."""

    code = "STALE_BREAKDOWN"


class NotificationFailure(SettlementError):
    """Notification could not be delivered. Logged only."""

    code = "NOTIFICATION_FAILURE"
