"""Builders for transient model objects used by the engine tests.

Column defaults are only applied on insert, so every field the engine reads is
set explicitly here.
"""

from datetime import date
from decimal import Decimal

from settlement.models.advance import AdvanceMonthly, Payment
from settlement.models.building import Building
from settlement.models.cost import Cost
from settlement.models.enums import AreaSource, DataSourceColumn, Methodology
from settlement.models.meter import Meter, UnitMeterSetting
from settlement.models.meter_reading import MeterReading
from settlement.models.service import Service, ServiceUnitOverride, ServiceYearlyRate
from settlement.models.unit import PersonMonths, Unit, UnitParameter
from settlement.services.billing_repository import BillingInputs

YEAR = 2024


def make_building(id: int = 1, name: str = "Test Building") -> Building:
    return Building(id=id, name=name, address="Test Street 1")


def make_unit(
    id: int,
    unit_number: str | None = None,
    total_area: str | Decimal = "0",
    floor_area: str | Decimal | None = None,
    share_numerator: int = 1,
    share_denominator: int = 1,
    resident_count: int | None = None,
    variable_symbol: str | None = None,
    building_id: int = 1,
) -> Unit:
    return Unit(
        id=id,
        building_id=building_id,
        unit_number=unit_number or f"{id:02d}",
        total_area=Decimal(total_area),
        floor_area=Decimal(floor_area) if floor_area is not None else None,
        share_numerator=share_numerator,
        share_denominator=share_denominator,
        resident_count=resident_count,
        variable_symbol=variable_symbol,
    )


def make_service(
    id: int,
    methodology: Methodology | str = Methodology.AREA,
    name: str | None = None,
    building_id: int = 1,
    **fields,
) -> Service:
    values = {
        "code": None,
        "parameter_name": None,
        "data_source_column": DataSourceColumn.CONSUMPTION.value,
        "area_source": AreaSource.TOTAL.value,
        "measurement_unit": None,
        "unit_price": None,
        "manual_cost": None,
        "divisor": None,
        "formula": None,
        "formula_base": None,
        "cost_with_meter": None,
        "cost_without_meter": None,
        "guidance_number": None,
        "is_repair_fund": False,
        "merge_with_next": False,
        "order": id,
        "is_active": True,
    }
    values.update(fields)
    return Service(
        id=id,
        building_id=building_id,
        name=name or f"Service {id}",
        methodology=Methodology(methodology).value,
        **values,
    )


def make_cost(id: int, service_id: int | None, amount: str, period: int = YEAR) -> Cost:
    return Cost(id=id, building_id=1, service_id=service_id, period=period, amount=Decimal(amount))


def make_meter(id: int, unit_id: int, service_id: int | None, is_active: bool = True) -> Meter:
    return Meter(id=id, unit_id=unit_id, service_id=service_id, is_active=is_active)


def make_reading(
    id: int,
    meter_id: int,
    consumption: str,
    value: str | None = None,
    period: int = YEAR,
    precalculated_cost: str | None = None,
) -> MeterReading:
    return MeterReading(
        id=id,
        meter_id=meter_id,
        period=period,
        reading_date=date(period, 12, 31),
        value=Decimal(value if value is not None else consumption),
        consumption=Decimal(consumption),
        precalculated_cost=Decimal(precalculated_cost) if precalculated_cost is not None else None,
    )


def make_meter_setting(unit_id: int, service_id: int, has_meter: bool) -> UnitMeterSetting:
    return UnitMeterSetting(unit_id=unit_id, service_id=service_id, has_meter=has_meter)


def make_parameter(id: int, unit_id: int, name: str, value: str) -> UnitParameter:
    return UnitParameter(id=id, unit_id=unit_id, name=name, value=Decimal(value))


def make_person_months(unit_id: int, person_count: int, months=range(1, 13), year: int = YEAR):
    return [
        PersonMonths(unit_id=unit_id, year=year, month=month, person_count=person_count)
        for month in months
    ]


def make_advances(unit_id: int, service_id: int, amount: str, months=range(1, 13), year: int = YEAR):
    return [
        AdvanceMonthly(
            unit_id=unit_id, service_id=service_id, year=year, month=month, amount=Decimal(amount)
        )
        for month in months
    ]


def make_payment(
    id: int,
    amount: str,
    paid_on: date,
    unit_id: int | None = None,
    variable_symbol: str | None = None,
    period: int = YEAR,
) -> Payment:
    return Payment(
        id=id,
        unit_id=unit_id,
        variable_symbol=variable_symbol,
        period=period,
        amount=Decimal(amount),
        paid_on=paid_on,
    )


def make_override(
    service_id: int,
    unit_id: int,
    manual_cost: str | None = None,
    manual_share: str | None = None,
) -> ServiceUnitOverride:
    return ServiceUnitOverride(
        service_id=service_id,
        unit_id=unit_id,
        manual_cost=Decimal(manual_cost) if manual_cost is not None else None,
        manual_share=Decimal(manual_share) if manual_share is not None else None,
    )


def make_yearly_rate(
    service_id: int,
    cost_with_meter: str | None = None,
    cost_without_meter: str | None = None,
    year: int = YEAR,
) -> ServiceYearlyRate:
    return ServiceYearlyRate(
        service_id=service_id,
        year=year,
        cost_with_meter=Decimal(cost_with_meter) if cost_with_meter is not None else None,
        cost_without_meter=(
            Decimal(cost_without_meter) if cost_without_meter is not None else None
        ),
    )


def make_inputs(**rows) -> BillingInputs:
    return BillingInputs(building=rows.pop("building", make_building()), year=YEAR, **rows)
