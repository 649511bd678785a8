"""Read access to stored billing periods and results for the API."""

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from settlement.models.billing import BillingPeriod, BillingResult
from settlement.models.building import Building
from settlement.schemas.billing import (
    BillingPeriodResponse,
    BillingResultResponse,
    BillingServiceCostResponse,
)


def get_building(db: Session, building_id: int) -> Building:
    """Get a building by ID."""
    building = db.query(Building).filter(Building.id == building_id).first()
    if not building:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Building not found",
        )
    return building


def get_period(db: Session, building_id: int, year: int) -> BillingPeriod:
    """Get the billing period of a building for a year."""
    get_building(db, building_id)
    period = (
        db.query(BillingPeriod)
        .filter(BillingPeriod.building_id == building_id, BillingPeriod.year == year)
        .first()
    )
    if not period:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Billing period {year} not found",
        )
    return period


def get_result(db: Session, result_id: int) -> BillingResult:
    """Get a unit's billing result by ID."""
    result = db.query(BillingResult).filter(BillingResult.id == result_id).first()
    if not result:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Billing result not found",
        )
    return result


def result_to_response(result: BillingResult) -> BillingResultResponse:
    """Convert a BillingResult model to a response schema."""
    return BillingResultResponse(
        id=result.id,
        billing_period_id=result.billing_period_id,
        unit_id=result.unit_id,
        total_cost=result.total_cost,
        total_advance_prescribed=result.total_advance_prescribed,
        total_advance_paid=result.total_advance_paid,
        repair_fund=result.repair_fund,
        repair_fund_basis=result.repair_fund_basis,
        result=result.result,
        monthly_prescribed=result.get_monthly_prescribed(),
        monthly_paid=result.get_monthly_paid(),
        service_costs=[
            BillingServiceCostResponse.model_validate(line) for line in result.service_costs
        ],
    )


def period_to_response(period: BillingPeriod) -> BillingPeriodResponse:
    """Convert a BillingPeriod model with its results to a response schema."""
    return BillingPeriodResponse(
        id=period.id,
        building_id=period.building_id,
        year=period.year,
        status=period.status,
        calculated_at=period.calculated_at,
        results=[result_to_response(r) for r in period.results],
    )
