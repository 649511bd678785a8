"""Building database model."""

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement.core.database import Base

if TYPE_CHECKING:
    from settlement.models.service import Service
    from settlement.models.unit import Unit


class Building(Base):
    """Building entity that owns units and services."""

    __tablename__ = "buildings"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100), index=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bank_account: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=lambda: datetime.now(UTC))

    # Relationships
    units: Mapped[list["Unit"]] = relationship(back_populates="building")
    services: Mapped[list["Service"]] = relationship(back_populates="building")
