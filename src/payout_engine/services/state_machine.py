"""Per-farmer settlement state machine with transition validation."""

from __future__ import annotations

from enum import Enum
from uuid import UUID


class SettlementStatus(str, Enum):
    """Settlement status of one (farmer, period) within a batch."""

    NOT_SETTLED = "not_settled"
    CALCULATED = "calculated"
    COMMITTED = "committed"
    SKIPPED = "skipped"
    FAILED = "failed"


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class SettlementStateMachine:
    """State machine for a farmer's settlement in one period.

    Allowed transitions:
    - not_settled → calculated
    - not_settled → skipped (already settled before this run)
    - not_settled → failed (lookup error)
    - calculated → committed
    - calculated → skipped (lost the race to another run)
    - calculated → failed (rolled back)

    committed, skipped and failed are terminal. A committed pair is never
    re-settled; a later run observes it as skipped.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        SettlementStatus.NOT_SETTLED: [
            SettlementStatus.CALCULATED,
            SettlementStatus.SKIPPED,
            SettlementStatus.FAILED,
        ],
        SettlementStatus.CALCULATED: [
            SettlementStatus.COMMITTED,
            SettlementStatus.SKIPPED,
            SettlementStatus.FAILED,
        ],
        SettlementStatus.COMMITTED: [],
        SettlementStatus.SKIPPED: [],
        SettlementStatus.FAILED: [],
    }

    def __init__(
        self,
        farmer_id: UUID,
        period: str,
        status: SettlementStatus = SettlementStatus.NOT_SETTLED,
    ):
        self.farmer_id = farmer_id
        self.period = period
        self.status = status

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        return to_status in cls.VALID_TRANSITIONS.get(from_status, [])

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    def transition_to(self, to_status: SettlementStatus) -> SettlementStatus:
        self.validate_transition(self.status, to_status)
        self.status = to_status
        return self.status
