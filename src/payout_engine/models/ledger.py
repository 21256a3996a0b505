"""Delivery, account and loan ledger models."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from payout_engine.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from payout_engine.models.member import Farmer


class AccountType:
    """Well-known account types."""

    SAVINGS = "Savings"
    PAYOUT = "Payout"


class Delivery(Base, TimestampMixin):
    """One recorded milk drop-off. Append-only."""

    __tablename__ = "delivery"

    delivery_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    farmer_id: Mapped[UUID] = mapped_column(
        ForeignKey("farmer.farmer_id", ondelete="RESTRICT"),
        nullable=False,
    )
    delivered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    fat: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    snf: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="delivery_quantity_nonneg"),
        Index("ix_delivery_delivered_at_farmer", "delivered_at", "farmer_id"),
    )

    # Relationships
    farmer: Mapped[Farmer] = relationship(back_populates="deliveries")

    @validates("delivered_at")
    def _normalize_delivered_at(self, key: str, value: datetime) -> datetime:
        # Stored in UTC; naive values are taken as UTC already.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @classmethod
    def capture(
        cls,
        farmer_id: UUID,
        delivered_at: datetime,
        quantity: Decimal,
        price_per_liter: Decimal,
        fat: Decimal = Decimal("0"),
        snf: Decimal = Decimal("0"),
        amount_override: Decimal | None = None,
    ) -> Delivery:
        """Build a delivery with its captured monetary amount."""
        if quantity < 0:
            raise ValueError("Delivery quantity cannot be negative")
        if amount_override is not None:
            amount = amount_override
        else:
            amount = (quantity * price_per_liter).quantize(
                Decimal("0.01"), rounding=ROUND_HALF_UP
            )
        return cls(
            farmer_id=farmer_id,
            delivered_at=delivered_at,
            quantity=quantity,
            fat=fat,
            snf=snf,
            amount=amount,
        )


class Account(Base, TimestampMixin):
    """Savings/contribution ledger owned by one farmer. Mutated only by crediting."""

    __tablename__ = "account"

    account_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    farmer_id: Mapped[UUID] = mapped_column(
        ForeignKey("farmer.farmer_id", ondelete="RESTRICT"),
        nullable=False,
    )
    account_number: Mapped[str] = mapped_column(String, nullable=False)
    account_name: Mapped[str] = mapped_column(String, nullable=False)
    balance: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    monthly_contribution: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="KES")
    account_type: Mapped[str] = mapped_column(String, nullable=False, default=AccountType.SAVINGS)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'inactive', 'closed')",
            name="account_status_check",
        ),
        CheckConstraint("monthly_contribution >= 0", name="account_contribution_nonneg"),
        Index("ix_account_farmer_type", "farmer_id", "account_type"),
        Index(
            "uq_account_farmer_payout",
            "farmer_id",
            unique=True,
            postgresql_where=text("account_type = 'Payout'"),
            sqlite_where=text("account_type = 'Payout'"),
        ),
    )

    # Relationships
    farmer: Mapped[Farmer] = relationship(back_populates="accounts")


class Loan(Base, TimestampMixin):
    """Farmer credit obligation."""

    __tablename__ = "loan"

    loan_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    loan_no: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    farmer_id: Mapped[UUID] = mapped_column(
        ForeignKey("farmer.farmer_id", ondelete="RESTRICT"),
        nullable=False,
    )
    loan_type: Mapped[str] = mapped_column(String, nullable=False, default="Term")
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    term_months: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    repaid_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )
    status: Mapped[str] = mapped_column(String, nullable=False, default="applied")
    disbursed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('applied', 'disbursed', 'repaid', 'overdue')",
            name="loan_status_check",
        ),
        CheckConstraint(
            "loan_type IN ('Emergency', 'Term', 'Seasonal', 'Agricultural', 'General')",
            name="loan_type_check",
        ),
        CheckConstraint("term_months >= 0", name="loan_term_nonneg"),
        CheckConstraint("repaid_amount >= 0", name="loan_repaid_nonneg"),
        CheckConstraint("repaid_amount <= amount", name="loan_repaid_within_principal"),
    )

    # Relationships
    farmer: Mapped[Farmer] = relationship(back_populates="loans")
