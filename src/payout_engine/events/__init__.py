"""Domain events for settlement runs."""

from payout_engine.events.emitter import AsyncEventEmitter
from payout_engine.events.types import (
    DomainEvent,
    EventMetadata,
    PayoutBatchCompleted,
    PayoutCommitted,
)

__all__ = [
    "AsyncEventEmitter",
    "DomainEvent",
    "EventMetadata",
    "PayoutBatchCompleted",
    "PayoutCommitted",
]
