"""Storage interface of the billing engine and its SQLAlchemy implementation.

The engine never talks to the database directly. It receives a repository,
reads one immutable snapshot of a building's year through load_inputs and
hands the complete result set back through replace_period_results, which must
be all-or-nothing.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from settlement.core.errors import BuildingNotFoundError, PersistenceError
from settlement.models.advance import AdvanceMonthly, Payment
from settlement.models.billing import BillingPeriod, BillingResult, BillingServiceCost
from settlement.models.building import Building
from settlement.models.cost import Cost
from settlement.models.enums import BillingPeriodStatus
from settlement.models.meter import Meter, UnitMeterSetting
from settlement.models.meter_reading import MeterReading
from settlement.models.service import Service, ServiceUnitOverride, ServiceYearlyRate
from settlement.models.unit import PersonMonths, Unit, UnitParameter

if TYPE_CHECKING:
    from settlement.services.composer import UnitSettlement

logger = logging.getLogger(__name__)


@dataclass
class BillingInputs:
    """Everything the engine reads for one building and year."""

    building: Building
    year: int
    units: list[Unit] = field(default_factory=list)
    services: list[Service] = field(default_factory=list)
    costs: list[Cost] = field(default_factory=list)
    meters: list[Meter] = field(default_factory=list)
    readings: list[MeterReading] = field(default_factory=list)
    parameters: list[UnitParameter] = field(default_factory=list)
    person_months: list[PersonMonths] = field(default_factory=list)
    advances: list[AdvanceMonthly] = field(default_factory=list)
    payments: list[Payment] = field(default_factory=list)
    overrides: list[ServiceUnitOverride] = field(default_factory=list)
    yearly_rates: list[ServiceYearlyRate] = field(default_factory=list)
    meter_settings: list[UnitMeterSetting] = field(default_factory=list)


class BillingRepository(Protocol):
    """Storage operations the engine depends on."""

    def load_inputs(self, building_id: int, year: int) -> BillingInputs:
        ...

    def ensure_period(self, building_id: int, year: int) -> BillingPeriod:
        ...

    def replace_period_results(
        self,
        building_id: int,
        year: int,
        settlements: list["UnitSettlement"],
        generated_at: datetime,
    ) -> int:
        ...


class SqlAlchemyBillingRepository:
    """BillingRepository backed by a SQLAlchemy session."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def load_inputs(self, building_id: int, year: int) -> BillingInputs:
        """Read the building's units, active services and all input rows for the year."""
        building = self.db.query(Building).filter(Building.id == building_id).first()
        if not building:
            raise BuildingNotFoundError(building_id)

        units = (
            self.db.query(Unit)
            .filter(Unit.building_id == building_id)
            .order_by(Unit.unit_number, Unit.id)
            .all()
        )
        unit_ids = [u.id for u in units]
        symbols = [u.variable_symbol for u in units if u.variable_symbol]

        services = (
            self.db.query(Service)
            .filter(Service.building_id == building_id, Service.is_active.is_(True))
            .order_by(Service.order, Service.id)
            .all()
        )
        service_ids = [s.id for s in services]

        costs = (
            self.db.query(Cost)
            .filter(Cost.building_id == building_id, Cost.period == year)
            .order_by(Cost.id)
            .all()
        )
        meters = self.db.query(Meter).filter(Meter.unit_id.in_(unit_ids)).order_by(Meter.id).all()
        readings = (
            self.db.query(MeterReading)
            .filter(
                MeterReading.meter_id.in_([m.id for m in meters]),
                MeterReading.period == year,
            )
            .order_by(MeterReading.id)
            .all()
        )
        parameters = (
            self.db.query(UnitParameter)
            .filter(UnitParameter.unit_id.in_(unit_ids))
            .order_by(UnitParameter.id)
            .all()
        )
        person_months = (
            self.db.query(PersonMonths)
            .filter(PersonMonths.unit_id.in_(unit_ids), PersonMonths.year == year)
            .order_by(PersonMonths.id)
            .all()
        )
        advances = (
            self.db.query(AdvanceMonthly)
            .filter(
                AdvanceMonthly.unit_id.in_(unit_ids),
                AdvanceMonthly.service_id.in_(service_ids),
                AdvanceMonthly.year == year,
            )
            .order_by(AdvanceMonthly.id)
            .all()
        )
        payments = (
            self.db.query(Payment)
            .filter(
                Payment.period == year,
                or_(Payment.unit_id.in_(unit_ids), Payment.variable_symbol.in_(symbols)),
            )
            .order_by(Payment.paid_on, Payment.id)
            .all()
        )
        overrides = (
            self.db.query(ServiceUnitOverride)
            .filter(ServiceUnitOverride.service_id.in_(service_ids))
            .order_by(ServiceUnitOverride.id)
            .all()
        )
        yearly_rates = (
            self.db.query(ServiceYearlyRate)
            .filter(ServiceYearlyRate.service_id.in_(service_ids), ServiceYearlyRate.year == year)
            .order_by(ServiceYearlyRate.id)
            .all()
        )
        meter_settings = (
            self.db.query(UnitMeterSetting)
            .filter(
                UnitMeterSetting.unit_id.in_(unit_ids),
                UnitMeterSetting.service_id.in_(service_ids),
            )
            .order_by(UnitMeterSetting.id)
            .all()
        )

        return BillingInputs(
            building=building,
            year=year,
            units=units,
            services=services,
            costs=costs,
            meters=meters,
            readings=readings,
            parameters=parameters,
            person_months=person_months,
            advances=advances,
            payments=payments,
            overrides=overrides,
            yearly_rates=yearly_rates,
            meter_settings=meter_settings,
        )

    def get_period(self, building_id: int, year: int) -> BillingPeriod | None:
        """Get the billing period of a building and year, if opened."""
        return (
            self.db.query(BillingPeriod)
            .filter(BillingPeriod.building_id == building_id, BillingPeriod.year == year)
            .first()
        )

    def ensure_period(self, building_id: int, year: int) -> BillingPeriod:
        """Get the billing period or open it in DRAFT state."""
        building = self.db.query(Building).filter(Building.id == building_id).first()
        if not building:
            raise BuildingNotFoundError(building_id)

        period = self.get_period(building_id, year)
        if period:
            return period

        period = BillingPeriod(
            building_id=building_id,
            year=year,
            status=BillingPeriodStatus.DRAFT.value,
        )
        try:
            self.db.add(period)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Could not open billing period {building_id}/{year}") from exc
        self.db.refresh(period)
        return period

    def replace_period_results(
        self,
        building_id: int,
        year: int,
        settlements: list["UnitSettlement"],
        generated_at: datetime,
    ) -> int:
        """Replace all results of the period in one transaction.

        Returns the billing period id. On failure the transaction is rolled
        back, so results of a previous run stay untouched.
        """
        try:
            period = self.get_period(building_id, year)
            if not period:
                period = BillingPeriod(building_id=building_id, year=year)
                self.db.add(period)
                self.db.flush()

            deleted_lines = (
                self.db.query(BillingServiceCost)
                .filter(BillingServiceCost.billing_period_id == period.id)
                .delete(synchronize_session="fetch")
            )
            deleted_results = (
                self.db.query(BillingResult)
                .filter(BillingResult.billing_period_id == period.id)
                .delete(synchronize_session="fetch")
            )
            logger.debug(
                "Deleted %s results and %s line items of period %s",
                deleted_results,
                deleted_lines,
                period.id,
            )

            for settlement in settlements:
                result = BillingResult(
                    billing_period_id=period.id,
                    unit_id=settlement.unit_id,
                    total_cost=settlement.total_cost,
                    total_advance_prescribed=settlement.total_advance_prescribed,
                    total_advance_paid=settlement.total_advance_paid,
                    repair_fund=settlement.repair_fund,
                    repair_fund_basis=settlement.repair_fund_basis,
                    result=settlement.result,
                )
                result.set_monthly_prescribed(settlement.monthly_prescribed)
                result.set_monthly_paid(settlement.monthly_paid)
                self.db.add(result)
                self.db.flush()

                for line in settlement.lines:
                    self.db.add(
                        BillingServiceCost(
                            billing_period_id=period.id,
                            billing_result_id=result.id,
                            service_id=line.service_id,
                            unit_id=line.unit_id,
                            methodology=line.methodology,
                            distribution_base=line.distribution_base,
                            building_total_base=line.building_total_base,
                            building_total_cost=line.building_total_cost,
                            unit_price_per_unit=line.unit_price_per_unit,
                            unit_cost=line.unit_cost,
                            unit_advance=line.unit_advance,
                            unit_balance=line.unit_balance,
                            calculation_basis=line.calculation_basis,
                            merge_with_next=line.merge_with_next,
                        )
                    )

            period.status = BillingPeriodStatus.CALCULATED.value
            period.calculated_at = generated_at
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(
                f"Could not store results of building {building_id} for {year}"
            ) from exc

        return period.id
