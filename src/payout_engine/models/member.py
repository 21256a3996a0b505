"""Farmer (member directory) model."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payout_engine.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from payout_engine.models.ledger import Account, Delivery, Loan


class Farmer(Base, TimestampMixin):
    """Cooperative member. Read-only for settlement purposes."""

    __tablename__ = "farmer"

    farmer_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    member_no: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    farmer_code: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    middle_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    surname: Mapped[str] = mapped_column(String, nullable=False)
    phone: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'inactive', 'suspended')",
            name="farmer_status_check",
        ),
    )

    # Relationships
    deliveries: Mapped[list[Delivery]] = relationship(back_populates="farmer")
    accounts: Mapped[list[Account]] = relationship(back_populates="farmer")
    loans: Mapped[list[Loan]] = relationship(back_populates="farmer")

    @property
    def display_name(self) -> str:
        """First name and surname."""
        return f"{self.first_name} {self.surname}"
