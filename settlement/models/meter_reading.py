"""MeterReading database model."""

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement.core.database import Base

if TYPE_CHECKING:
    from settlement.models.meter import Meter


class MeterReading(Base):
    """Reading of a meter for one billing period."""

    __tablename__ = "meter_readings"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    meter_id: Mapped[int] = mapped_column(ForeignKey("meters.id"), index=True)
    period: Mapped[int] = mapped_column(index=True)  # Year
    reading_date: Mapped[date | None] = mapped_column(nullable=True)

    # Raw value on the meter and the consumption derived for the period
    value: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=3), default=0)
    consumption: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=3), default=0)
    # Unit cost computed outside the engine; replaces the consumption split when set
    precalculated_cost: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=12, scale=2), nullable=True
    )

    # Relationships
    meter: Mapped["Meter"] = relationship(back_populates="readings")
