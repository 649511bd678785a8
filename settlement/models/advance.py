"""Advance prescription and payment database models."""

from datetime import date
from decimal import Decimal

from sqlalchemy import ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from settlement.core.database import Base


class AdvanceMonthly(Base):
    """Advance prescribed to a unit for one service in one month."""

    __tablename__ = "advances_monthly"
    __table_args__ = (UniqueConstraint("unit_id", "service_id", "year", "month"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    unit_id: Mapped[int] = mapped_column(ForeignKey("units.id"), index=True)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id"), index=True)
    year: Mapped[int] = mapped_column(index=True)
    month: Mapped[int]
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2))


class Payment(Base):
    """Money actually received for a unit.

    Payments are unit-level. When unit_id is missing the payment is matched
    to a unit through its variable symbol.
    """

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(primary_key=True)
    unit_id: Mapped[int | None] = mapped_column(ForeignKey("units.id"), nullable=True, index=True)
    variable_symbol: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    period: Mapped[int] = mapped_column(index=True)  # Year the payment settles
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2))
    paid_on: Mapped[date]
