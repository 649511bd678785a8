"""Billing schemas for calculation summaries and persisted results."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from settlement.models.billing import MONTHS_IN_YEAR
from settlement.models.enums import BillingPeriodStatus, Methodology, WarningCode


class CalculationWarning(BaseModel):
    """Non-fatal finding recorded while apportioning one service."""

    code: WarningCode
    service_id: int | None = None
    message: str


class ServiceTotal(BaseModel):
    """Building-level figures of one service after apportionment."""

    service_id: int
    name: str
    methodology: Methodology
    building_total_cost: Decimal
    distributed_cost: Decimal
    is_repair_fund: bool = False


class CalculationSummary(BaseModel):
    """Result of one engine run, returned to the calling layer."""

    billing_period_id: int
    building_id: int
    year: int
    unit_count: int
    service_count: int
    per_service_totals: list[ServiceTotal]
    generated_at: datetime
    warnings: list[CalculationWarning] = Field(default_factory=list)


class BillingPeriodCreate(BaseModel):
    """Schema for opening a billing period."""

    year: int

    @field_validator("year")
    @classmethod
    def validate_year(cls, v: int) -> int:
        """Reject obviously wrong years."""
        if v < 1900 or v > 2999:
            raise ValueError("Year must be between 1900 and 2999")
        return v


class BillingServiceCostResponse(BaseModel):
    """Schema for one persisted line item."""

    id: int
    service_id: int
    unit_id: int
    methodology: Methodology
    distribution_base: Decimal
    building_total_base: Decimal
    building_total_cost: Decimal
    unit_price_per_unit: Decimal | None
    unit_cost: Decimal
    unit_advance: Decimal
    unit_balance: Decimal
    calculation_basis: str
    merge_with_next: bool

    model_config = {"from_attributes": True}


class BillingResultResponse(BaseModel):
    """Schema for a unit's settlement result."""

    id: int
    billing_period_id: int
    unit_id: int
    total_cost: Decimal
    total_advance_prescribed: Decimal
    total_advance_paid: Decimal
    repair_fund: Decimal
    repair_fund_basis: str | None
    result: Decimal
    monthly_prescribed: list[Decimal] = Field(min_length=MONTHS_IN_YEAR, max_length=MONTHS_IN_YEAR)
    monthly_paid: list[Decimal] = Field(min_length=MONTHS_IN_YEAR, max_length=MONTHS_IN_YEAR)
    service_costs: list[BillingServiceCostResponse] = Field(default_factory=list)


class BillingPeriodResponse(BaseModel):
    """Schema for a billing period with its unit results."""

    id: int
    building_id: int
    year: int
    status: BillingPeriodStatus
    calculated_at: datetime | None
    results: list[BillingResultResponse] = Field(default_factory=list)
