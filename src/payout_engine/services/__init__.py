"""Payout engine services."""

from payout_engine.services.committer import PayoutRecord, SettlementCommitter
from payout_engine.services.idempotency import IdempotencyGuard
from payout_engine.services.notifications import (
    HttpSmsGateway,
    LoggingSmsGateway,
    NotificationDispatcher,
    build_sms_gateway,
)
from payout_engine.services.orchestrator import (
    CommitReport,
    FailedFarmer,
    PreviewReport,
    SettlementOrchestrator,
    SkippedFarmer,
)
from payout_engine.services.readers import LedgerReader
from payout_engine.services.state_machine import (
    InvalidTransitionError,
    SettlementStateMachine,
    SettlementStatus,
)

__all__ = [
    "CommitReport",
    "FailedFarmer",
    "HttpSmsGateway",
    "IdempotencyGuard",
    "InvalidTransitionError",
    "LedgerReader",
    "LoggingSmsGateway",
    "NotificationDispatcher",
    "PayoutRecord",
    "PreviewReport",
    "SettlementCommitter",
    "SettlementOrchestrator",
    "SettlementStateMachine",
    "SettlementStatus",
    "SkippedFarmer",
    "build_sms_gateway",
]
