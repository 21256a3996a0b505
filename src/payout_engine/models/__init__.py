"""ORM models for the payout engine."""

from payout_engine.models.base import Base, TimestampMixin
from payout_engine.models.ledger import Account, AccountType, Delivery, Loan
from payout_engine.models.member import Farmer
from payout_engine.models.payout import Notification, Payout

__all__ = [
    "Base",
    "TimestampMixin",
    "Account",
    "AccountType",
    "Delivery",
    "Farmer",
    "Loan",
    "Notification",
    "Payout",
]
