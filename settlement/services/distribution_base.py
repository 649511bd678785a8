"""Distribution base resolver.

For a service and a unit, computes the quantity a cost is proportioned by:
area, ownership share, meter consumption, a named unit parameter,
occupancy-months, resident count, or 1 for an equal split.
Resolution is a pure function of the year's stored data.
"""

import re
from collections import defaultdict
from decimal import Decimal
from typing import NamedTuple

from settlement.core.errors import ConfigurationError
from settlement.models.enums import (
    PROPORTIONAL_METHODOLOGIES,
    AreaSource,
    DataSourceColumn,
    Methodology,
)
from settlement.models.service import Service
from settlement.models.unit import Unit
from settlement.services.billing_repository import BillingInputs
from settlement.services.money import ZERO, fmt, to_decimal

MISSING_PARAMETER_ERROR = "error"
MISSING_PARAMETER_ZERO = "zero"


class ResolvedBase(NamedTuple):
    """A unit's distribution base and where it came from."""

    value: Decimal
    source: str


_DIGITS = re.compile(r"(\d+)")


def natural_key(text: str | None) -> tuple[tuple[int, int | str], ...]:
    """Sort key that orders digit runs by value, so "2" comes before "10"."""
    return tuple(
        (0, int(part)) if part.isdigit() else (1, part)
        for part in _DIGITS.split(text or "")
        if part
    )


def unit_sort_key(unit: Unit) -> tuple:
    """Stable processing order: unit number in natural order, then id."""
    return (natural_key(unit.unit_number), unit.id)


class YearData:
    """Indexes over one year's input rows, built once per run."""

    def __init__(self, inputs: BillingInputs) -> None:
        self.year = inputs.year
        self.units = sorted(inputs.units, key=unit_sort_key)

        self._meters: dict[tuple[int, int], list] = defaultdict(list)
        for meter in inputs.meters:
            if meter.service_id is not None:
                self._meters[(meter.unit_id, meter.service_id)].append(meter)

        self._readings: dict[int, list] = defaultdict(list)
        for reading in inputs.readings:
            if reading.period == inputs.year:
                self._readings[reading.meter_id].append(reading)

        self._parameters: dict[tuple[int, str], Decimal] = {
            (p.unit_id, p.name): to_decimal(p.value) for p in inputs.parameters
        }

        self._meter_settings: dict[tuple[int, int], bool] = {
            (s.unit_id, s.service_id): bool(s.has_meter) for s in inputs.meter_settings
        }

        self._occupancy: dict[int, Decimal] = defaultdict(lambda: ZERO)
        for entry in inputs.person_months:
            if entry.year == inputs.year:
                self._occupancy[entry.unit_id] += to_decimal(entry.person_count)

    def consumption(
        self,
        unit_id: int,
        service_id: int,
        column: DataSourceColumn = DataSourceColumn.CONSUMPTION,
    ) -> Decimal:
        """Sum of the unit's readings for the service; 0 without meters or readings."""
        total = ZERO
        for meter in self._meters.get((unit_id, service_id), []):
            for reading in self._readings.get(meter.id, []):
                if column == DataSourceColumn.VALUE:
                    total += to_decimal(reading.value)
                else:
                    total += to_decimal(reading.consumption)
        return total

    def precalculated_cost(self, unit_id: int, service_id: int) -> Decimal | None:
        """Sum of externally computed reading costs, or None when no reading carries one."""
        costs = [
            to_decimal(reading.precalculated_cost)
            for meter in self._meters.get((unit_id, service_id), [])
            for reading in self._readings.get(meter.id, [])
            if reading.precalculated_cost is not None
        ]
        return sum(costs, ZERO) if costs else None

    def has_active_meter(self, unit_id: int, service_id: int) -> bool:
        """Check whether the unit has a working meter for the service."""
        return any(m.is_active for m in self._meters.get((unit_id, service_id), []))

    def is_metered(self, unit_id: int, service_id: int) -> bool:
        """Metered status for dual-rate billing; a unit meter setting wins over the meters."""
        setting = self._meter_settings.get((unit_id, service_id))
        if setting is not None:
            return setting
        return self.has_active_meter(unit_id, service_id)

    def parameter(self, unit_id: int, name: str) -> Decimal | None:
        """Value of a named unit parameter, or None when undefined."""
        return self._parameters.get((unit_id, name))

    def occupancy(self, unit_id: int) -> Decimal:
        """Sum of the unit's person-months in the year."""
        return self._occupancy.get(unit_id, ZERO)


def validate_unit(unit: Unit) -> None:
    """Check the unit invariants the resolver relies on."""
    if not unit.share_denominator or unit.share_denominator <= 0:
        raise ConfigurationError(
            f"Unit {unit.unit_number} has a non-positive share denominator"
        )
    if to_decimal(unit.total_area) < 0 or to_decimal(unit.floor_area) < 0:
        raise ConfigurationError(f"Unit {unit.unit_number} has a negative area")


def resolve_base(
    service: Service,
    unit: Unit,
    data: YearData,
    kind: Methodology | None = None,
    missing_parameter: str = MISSING_PARAMETER_ERROR,
) -> ResolvedBase:
    """Resolve the distribution base of one unit for one service.

    Args:
        service: Service being apportioned
        unit: Unit to resolve the base for
        data: Indexed input rows of the year
        kind: Base kind to resolve; defaults to the service methodology
        missing_parameter: "error" raises on an undefined unit parameter,
            "zero" resolves it to 0 and records that in the source string

    Raises:
        ConfigurationError: The kind has no base or a parameter is undefined
    """
    kind = Methodology(kind or service.methodology)

    if kind == Methodology.AREA:
        if AreaSource(service.area_source or AreaSource.TOTAL) == AreaSource.FLOOR:
            value = to_decimal(unit.floor_area)
            return ResolvedBase(value, f"floor area {fmt(value)} m2")
        value = to_decimal(unit.total_area)
        return ResolvedBase(value, f"total area {fmt(value)} m2")

    if kind == Methodology.SHARE:
        value = unit.ownership_share
        return ResolvedBase(
            value, f"ownership share {unit.share_numerator}/{unit.share_denominator}"
        )

    if kind == Methodology.CONSUMPTION:
        column = DataSourceColumn(service.data_source_column or DataSourceColumn.CONSUMPTION)
        value = data.consumption(unit.id, service.id, column)
        measure = service.measurement_unit or "units"
        return ResolvedBase(value, f"meter {column.value} {fmt(value, 3)} {measure}")

    if kind == Methodology.PARAMETER:
        if not service.parameter_name:
            raise ConfigurationError(
                f"Service '{service.name}' distributes by parameter but names none",
                service_id=service.id,
            )
        value = data.parameter(unit.id, service.parameter_name)
        if value is None:
            if missing_parameter != MISSING_PARAMETER_ZERO:
                raise ConfigurationError(
                    f"Parameter '{service.parameter_name}' is not defined for unit "
                    f"{unit.unit_number}",
                    service_id=service.id,
                )
            return ResolvedBase(ZERO, f"parameter {service.parameter_name} missing, treated as 0")
        return ResolvedBase(value, f"parameter {service.parameter_name} = {fmt(value, 3)}")

    if kind == Methodology.OCCUPANCY:
        value = data.occupancy(unit.id)
        return ResolvedBase(value, f"occupancy {fmt(value, 0)} person-months")

    if kind == Methodology.RESIDENTS:
        value = to_decimal(unit.resident_count)
        return ResolvedBase(value, f"residents {fmt(value, 0)}")

    if kind == Methodology.EQUAL:
        return ResolvedBase(Decimal(1), "equal share")

    raise ConfigurationError(
        f"Methodology '{kind.value}' has no distribution base",
        service_id=service.id,
    )


def is_base_kind(kind: Methodology | str | None) -> bool:
    """Check whether a methodology distributes by a resolved base."""
    if kind is None:
        return False
    try:
        return Methodology(kind) in PROPORTIONAL_METHODOLOGIES
    except ValueError:
        return False
