"""Meter database model."""

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement.core.database import Base

if TYPE_CHECKING:
    from settlement.models.meter_reading import MeterReading


class Meter(Base):
    """Meter installed in a unit, optionally bound to the service it measures."""

    __tablename__ = "meters"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    unit_id: Mapped[int] = mapped_column(ForeignKey("units.id"), index=True)
    service_id: Mapped[int | None] = mapped_column(
        ForeignKey("services.id"), nullable=True, index=True
    )
    serial_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Metadata
    created_at: Mapped[datetime] = mapped_column(default=lambda: datetime.now(UTC))
    is_active: Mapped[bool] = mapped_column(default=True)

    # Relationships
    readings: Mapped[list["MeterReading"]] = relationship(back_populates="meter")


class UnitMeterSetting(Base):
    """Whether a unit counts as metered for a dual-rate service, whatever meters exist."""

    __tablename__ = "unit_meter_settings"
    __table_args__ = (UniqueConstraint("unit_id", "service_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    unit_id: Mapped[int] = mapped_column(ForeignKey("units.id"), index=True)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id"), index=True)
    has_meter: Mapped[bool] = mapped_column(default=True)
