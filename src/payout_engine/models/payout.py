"""Payout settlement records and farmer notifications."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payout_engine.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from payout_engine.models.member import Farmer


class Payout(Base, TimestampMixin):
    """Immutable settlement record for one (farmer, period)."""

    __tablename__ = "payout"

    payout_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    farmer_id: Mapped[UUID] = mapped_column(
        ForeignKey("farmer.farmer_id", ondelete="RESTRICT"),
        nullable=False,
    )
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    rate_per_liter: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    total_milk_quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_milk_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total_loan_deductions: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total_contributions: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    lines: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    engine_version: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("farmer_id", "period", name="payout_farmer_period_unique"),
        Index("ix_payout_period", "period"),
    )

    # Relationships
    farmer: Mapped[Farmer] = relationship()


class Notification(Base, TimestampMixin):
    """In-app notification shown to a farmer."""

    __tablename__ = "notification"

    notification_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    farmer_id: Mapped[UUID] = mapped_column(
        ForeignKey("farmer.farmer_id", ondelete="CASCADE"),
        nullable=False,
    )
    notification_type: Mapped[str] = mapped_column(String, nullable=False, default="info")
    title: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "notification_type IN "
            "('welcome', 'milk_collected', 'payout_processed', 'loan_issued', 'info')",
            name="notification_type_check",
        ),
    )
