"""Service database models: cost categories and their per-unit overrides."""

from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement.core.database import Base
from settlement.models.enums import AreaSource, DataSourceColumn, Methodology

if TYPE_CHECKING:
    from settlement.models.building import Building


class Service(Base):
    """One cost category of a building together with its allocation settings.

    Which fields are read depends on the methodology:

        AREA            area_source
        CONSUMPTION     data_source_column (meters bound to this service)
        PARAMETER       parameter_name
        FIXED_PER_UNIT  unit_price
        DUAL_RATE       cost_with_meter, cost_without_meter, guidance_number
        FORMULA         formula, formula_base

    manual_cost replaces the building-level total and divisor replaces the
    building-level base sum for the proportional kinds.
    """

    __tablename__ = "services"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    building_id: Mapped[int] = mapped_column(ForeignKey("buildings.id"), index=True)
    name: Mapped[str] = mapped_column(String(100))
    code: Mapped[str | None] = mapped_column(String(30), nullable=True)

    methodology: Mapped[Methodology] = mapped_column(String(20), default=Methodology.SHARE.value)
    parameter_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    data_source_column: Mapped[DataSourceColumn] = mapped_column(
        String(20), default=DataSourceColumn.CONSUMPTION.value
    )
    area_source: Mapped[AreaSource] = mapped_column(String(10), default=AreaSource.TOTAL.value)
    measurement_unit: Mapped[str | None] = mapped_column(String(20), nullable=True)

    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(precision=18, scale=6), nullable=True)
    manual_cost: Mapped[Decimal | None] = mapped_column(Numeric(precision=12, scale=2), nullable=True)
    divisor: Mapped[Decimal | None] = mapped_column(Numeric(precision=18, scale=6), nullable=True)
    formula: Mapped[str | None] = mapped_column(Text, nullable=True)
    formula_base: Mapped[Methodology | None] = mapped_column(String(20), nullable=True)

    # Dual-rate (metered vs. unmetered units)
    cost_with_meter: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=18, scale=6), nullable=True
    )
    cost_without_meter: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=18, scale=6), nullable=True
    )
    guidance_number: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=12, scale=3), nullable=True
    )

    is_repair_fund: Mapped[bool] = mapped_column(default=False)
    merge_with_next: Mapped[bool] = mapped_column(default=False)  # Presentation only
    order: Mapped[int] = mapped_column(default=0)
    is_active: Mapped[bool] = mapped_column(default=True)

    # Relationships
    building: Mapped["Building"] = relationship(back_populates="services")


class ServiceUnitOverride(Base):
    """Manual cost or share of one unit for one service."""

    __tablename__ = "service_unit_overrides"
    __table_args__ = (UniqueConstraint("service_id", "unit_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id"), index=True)
    unit_id: Mapped[int] = mapped_column(ForeignKey("units.id"), index=True)
    manual_cost: Mapped[Decimal | None] = mapped_column(Numeric(precision=12, scale=2), nullable=True)
    manual_share: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=18, scale=9), nullable=True
    )


class ServiceYearlyRate(Base):
    """Dual-rate prices of a service for one year; unset fields fall back to the service."""

    __tablename__ = "service_yearly_rates"
    __table_args__ = (UniqueConstraint("service_id", "year"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id"), index=True)
    year: Mapped[int] = mapped_column(index=True)
    cost_with_meter: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=18, scale=6), nullable=True
    )
    cost_without_meter: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=18, scale=6), nullable=True
    )
