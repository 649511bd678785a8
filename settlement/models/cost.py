"""Cost database model - invoice-level amounts per building and year."""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from settlement.core.database import Base


class Cost(Base):
    """Invoice amount booked against a building, optionally for one service.

    Costs without a service are general costs; they are recorded but not
    apportioned.
    """

    __tablename__ = "costs"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    building_id: Mapped[int] = mapped_column(ForeignKey("buildings.id"), index=True)
    service_id: Mapped[int | None] = mapped_column(
        ForeignKey("services.id"), nullable=True, index=True
    )
    period: Mapped[int] = mapped_column(index=True)  # Year
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2))
    vat_amount: Mapped[Decimal | None] = mapped_column(Numeric(precision=12, scale=2), nullable=True)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=lambda: datetime.now(UTC))
