"""Unit database models: units, named unit parameters and occupancy."""

from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement.core.database import Base

if TYPE_CHECKING:
    from settlement.models.building import Building


class Unit(Base):
    """Apartment or other space inside a building."""

    __tablename__ = "units"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    building_id: Mapped[int] = mapped_column(ForeignKey("buildings.id"), index=True)
    unit_number: Mapped[str] = mapped_column(String(20), index=True)

    total_area: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=3), default=0)
    floor_area: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=12, scale=3), nullable=True
    )
    share_numerator: Mapped[int] = mapped_column(default=1)
    share_denominator: Mapped[int] = mapped_column(default=1)
    resident_count: Mapped[int | None] = mapped_column(nullable=True)
    variable_symbol: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)

    # Relationships
    building: Mapped["Building"] = relationship(back_populates="units")

    @property
    def ownership_share(self) -> Decimal:
        """Ownership share as a fraction (numerator / denominator)."""
        return Decimal(self.share_numerator) / Decimal(self.share_denominator)


class UnitParameter(Base):
    """Named numeric attribute of a unit, e.g. a chimney count."""

    __tablename__ = "unit_parameters"
    __table_args__ = (UniqueConstraint("unit_id", "name"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    unit_id: Mapped[int] = mapped_column(ForeignKey("units.id"), index=True)
    name: Mapped[str] = mapped_column(String(50))
    value: Mapped[Decimal] = mapped_column(Numeric(precision=18, scale=6))


class PersonMonths(Base):
    """Number of people living in a unit during one month."""

    __tablename__ = "person_months"
    __table_args__ = (UniqueConstraint("unit_id", "year", "month"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    unit_id: Mapped[int] = mapped_column(ForeignKey("units.id"), index=True)
    year: Mapped[int] = mapped_column(index=True)
    month: Mapped[int]
    person_count: Mapped[int] = mapped_column(default=0)
