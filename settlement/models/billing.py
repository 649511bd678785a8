"""Billing database models - the persisted output of a calculation run."""

import json
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement.core.database import Base
from settlement.models.enums import BillingPeriodStatus, Methodology

if TYPE_CHECKING:
    from settlement.models.service import Service
    from settlement.models.unit import Unit

MONTHS_IN_YEAR = 12


def _dump_series(values: list[Decimal]) -> str:
    if len(values) != MONTHS_IN_YEAR:
        raise ValueError(f"Monthly series must have {MONTHS_IN_YEAR} elements, got {len(values)}")
    return json.dumps([str(v) for v in values])


def _load_series(raw: str | None) -> list[Decimal]:
    if not raw:
        return [Decimal("0.00")] * MONTHS_IN_YEAR
    return [Decimal(v) for v in json.loads(raw)]


class BillingPeriod(Base):
    """Settlement of one building for one year."""

    __tablename__ = "billing_periods"
    __table_args__ = (UniqueConstraint("building_id", "year"),)

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    building_id: Mapped[int] = mapped_column(ForeignKey("buildings.id"), index=True)
    year: Mapped[int] = mapped_column(index=True)
    status: Mapped[BillingPeriodStatus] = mapped_column(
        String(20), default=BillingPeriodStatus.DRAFT.value
    )
    calculated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Relationships
    results: Mapped[list["BillingResult"]] = relationship(
        back_populates="billing_period",
        order_by="BillingResult.id",
    )


class BillingResult(Base):
    """Settlement result of one unit in one billing period.

    result = total_advance_paid - total_cost - repair_fund
    Positive means a refund is owed to the owner, negative means the owner owes.
    """

    __tablename__ = "billing_results"
    __table_args__ = (UniqueConstraint("billing_period_id", "unit_id"),)

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    billing_period_id: Mapped[int] = mapped_column(ForeignKey("billing_periods.id"), index=True)
    unit_id: Mapped[int] = mapped_column(ForeignKey("units.id"), index=True)

    total_cost: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2))
    total_advance_prescribed: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2))
    total_advance_paid: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2))
    repair_fund: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2), default=0)
    repair_fund_basis: Mapped[str | None] = mapped_column(Text, nullable=True)
    result: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2))

    # JSON arrays of 12 decimal strings, January first
    monthly_prescribed_json: Mapped[str] = mapped_column(Text)
    monthly_paid_json: Mapped[str] = mapped_column(Text)

    # Relationships
    billing_period: Mapped["BillingPeriod"] = relationship(back_populates="results")
    unit: Mapped["Unit"] = relationship()
    service_costs: Mapped[list["BillingServiceCost"]] = relationship(
        back_populates="billing_result",
        order_by="BillingServiceCost.id",
    )

    def get_monthly_prescribed(self) -> list[Decimal]:
        """Parse the stored prescription series."""
        return _load_series(self.monthly_prescribed_json)

    def set_monthly_prescribed(self, values: list[Decimal]) -> None:
        """Serialize a 12-element prescription series for storage."""
        self.monthly_prescribed_json = _dump_series(values)

    def get_monthly_paid(self) -> list[Decimal]:
        """Parse the stored payment series."""
        return _load_series(self.monthly_paid_json)

    def set_monthly_paid(self, values: list[Decimal]) -> None:
        """Serialize a 12-element payment series for storage."""
        self.monthly_paid_json = _dump_series(values)


class BillingServiceCost(Base):
    """Every intermediate figure behind one unit's cost for one service."""

    __tablename__ = "billing_service_costs"
    __table_args__ = (UniqueConstraint("billing_result_id", "service_id"),)

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    billing_period_id: Mapped[int] = mapped_column(ForeignKey("billing_periods.id"), index=True)
    billing_result_id: Mapped[int] = mapped_column(ForeignKey("billing_results.id"), index=True)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id"), index=True)
    unit_id: Mapped[int] = mapped_column(ForeignKey("units.id"), index=True)

    methodology: Mapped[Methodology] = mapped_column(String(20))
    distribution_base: Mapped[Decimal] = mapped_column(Numeric(precision=18, scale=6))
    building_total_base: Mapped[Decimal] = mapped_column(Numeric(precision=18, scale=6))
    building_total_cost: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2))
    unit_price_per_unit: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=18, scale=6), nullable=True
    )
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2))
    unit_advance: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2))
    unit_balance: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2))
    calculation_basis: Mapped[str] = mapped_column(Text)
    merge_with_next: Mapped[bool] = mapped_column(default=False)  # Presentation only

    # Relationships
    billing_result: Mapped["BillingResult"] = relationship(back_populates="service_costs")
    service: Mapped["Service"] = relationship()
