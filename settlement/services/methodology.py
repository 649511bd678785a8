"""Methodology strategies: one pure function per methodology kind.

Every allocator receives an AllocationContext (service, ordered units,
indexed year data, building-level total cost, per-unit overrides) and returns
a ServiceAllocation with one unrounded line per unit. Rounding and residual
absorption happen later in the composer.

allocate_service() is the only place that picks an allocator.
"""

from concurrent.futures import Executor
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable

from settlement.core.errors import ConfigurationError, FormulaError
from settlement.models.cost import Cost
from settlement.models.enums import PROPORTIONAL_METHODOLOGIES, Methodology, WarningCode
from settlement.models.service import Service, ServiceUnitOverride, ServiceYearlyRate
from settlement.models.unit import Unit
from settlement.schemas.billing import CalculationWarning
from settlement.services.distribution_base import (
    MISSING_PARAMETER_ERROR,
    ResolvedBase,
    YearData,
    is_base_kind,
    resolve_base,
)
from settlement.services.formula import evaluate_formula, parse_formula
from settlement.services.money import ZERO, fmt, to_decimal

MONTHS = Decimal(12)


@dataclass
class UnitAllocation:
    """Unrounded cost of one unit for one service and how it was reached."""

    unit_id: int
    base: Decimal
    cost: Decimal
    basis: str
    price_per_unit: Decimal | None = None
    absorbs_residual: bool = False


@dataclass
class ServiceAllocation:
    """Per-unit allocation of one service.

    balanced: the rounded lines must sum exactly to total_cost; the composer
        moves the rounding residual onto the last residual-absorbing line.
    discrepancy_code: when not balanced, the warning recorded if the rounded
        lines do not sum to total_cost.
    """

    service: Service
    methodology: Methodology
    total_cost: Decimal
    total_base: Decimal
    lines: list[UnitAllocation]
    balanced: bool = True
    discrepancy_code: WarningCode | None = None
    warnings: list[CalculationWarning] = field(default_factory=list)


@dataclass
class AllocationContext:
    """Inputs of one service allocation."""

    service: Service
    units: list[Unit]
    data: YearData
    total_cost: Decimal
    overrides: dict[int, ServiceUnitOverride] = field(default_factory=dict)
    yearly_rate: ServiceYearlyRate | None = None
    missing_parameter: str = MISSING_PARAMETER_ERROR
    executor: Executor | None = None

    def warn(self, code: WarningCode, message: str) -> CalculationWarning:
        return CalculationWarning(code=code, service_id=self.service.id, message=message)


def building_total_cost(service: Service, costs: list[Cost]) -> Decimal:
    """Building-level cost of a service: the manual cost, else the sum of its Cost rows."""
    if service.manual_cost is not None:
        return to_decimal(service.manual_cost)
    return sum(
        (to_decimal(c.amount) for c in costs if c.service_id == service.id),
        ZERO,
    )


def resolve_all_bases(ctx: AllocationContext, kind: Methodology) -> list[ResolvedBase]:
    """Resolve the base of every unit, in unit order, optionally on a thread pool."""

    def resolve(unit: Unit) -> ResolvedBase:
        return resolve_base(ctx.service, unit, ctx.data, kind, ctx.missing_parameter)

    if ctx.executor is not None and len(ctx.units) > 1:
        return list(ctx.executor.map(resolve, ctx.units))
    return [resolve(unit) for unit in ctx.units]


def dual_rates(
    service: Service, yearly_rate: ServiceYearlyRate | None = None
) -> tuple[Decimal | None, Decimal | None]:
    """Metered and unmetered rate of the year, each falling back to the service's own."""
    with_meter = service.cost_with_meter
    without_meter = service.cost_without_meter
    if yearly_rate is not None:
        if yearly_rate.cost_with_meter is not None:
            with_meter = yearly_rate.cost_with_meter
        if yearly_rate.cost_without_meter is not None:
            without_meter = yearly_rate.cost_without_meter
    return with_meter, without_meter


def override_cost(override: ServiceUnitOverride, total_cost: Decimal) -> tuple[Decimal, str]:
    """Cost fixed by a manual override and its basis string."""
    if override.manual_cost is not None:
        cost = to_decimal(override.manual_cost)
        return cost, f"manual cost override {fmt(cost)}"
    share = to_decimal(override.manual_share)
    cost = total_cost * share
    return cost, f"manual share override {share.normalize()} x {fmt(total_cost)} = {fmt(cost)}"


def validate_service(
    service: Service,
    overrides: list[ServiceUnitOverride] | None = None,
    yearly_rate: ServiceYearlyRate | None = None,
) -> None:
    """Check a service's methodology configuration before anything is computed.

    Raises:
        ConfigurationError: Unknown methodology or missing/invalid parameter
        FormulaError: Invalid custom formula
    """
    try:
        methodology = Methodology(service.methodology)
    except ValueError as exc:
        raise ConfigurationError(
            f"Service '{service.name}' has unknown methodology '{service.methodology}'",
            service_id=service.id,
        ) from exc

    if methodology == Methodology.PARAMETER and not service.parameter_name:
        raise ConfigurationError(
            f"Service '{service.name}' distributes by parameter but names none",
            service_id=service.id,
        )
    if methodology == Methodology.FIXED_PER_UNIT and service.unit_price is None:
        raise ConfigurationError(
            f"Service '{service.name}' is fixed per unit but has no unit price",
            service_id=service.id,
        )
    if methodology == Methodology.DUAL_RATE and None in dual_rates(service, yearly_rate):
        raise ConfigurationError(
            f"Service '{service.name}' is dual-rate but lacks a metered or unmetered rate",
            service_id=service.id,
        )
    if methodology == Methodology.FORMULA:
        if service.formula_base is not None and not is_base_kind(service.formula_base):
            raise ConfigurationError(
                f"Service '{service.name}' uses '{service.formula_base}' as formula base",
                service_id=service.id,
            )
        try:
            parse_formula(service.formula)
        except FormulaError as exc:
            exc.service_id = service.id
            raise
    if service.divisor is not None and to_decimal(service.divisor) <= 0:
        raise ConfigurationError(
            f"Service '{service.name}' has a non-positive divisor",
            service_id=service.id,
        )

    for override in overrides or []:
        if override.manual_cost is None and override.manual_share is None:
            raise ConfigurationError(
                f"Override of unit {override.unit_id} on service '{service.name}' is empty",
                service_id=service.id,
            )
        if override.manual_cost is None and not ZERO <= to_decimal(override.manual_share) <= 1:
            raise ConfigurationError(
                f"Override share of unit {override.unit_id} on service '{service.name}' "
                f"must be between 0 and 1",
                service_id=service.id,
            )


def allocate_proportional(ctx: AllocationContext) -> ServiceAllocation:
    """Split the total in proportion to the resolved bases.

    Units with a manual override keep their fixed amount, and so do consumption
    units whose readings carry a precalculated cost. The remaining total is
    split among the other units. A manual divisor replaces the base sum.
    """
    methodology = Methodology(ctx.service.methodology)
    bases = resolve_all_bases(ctx, methodology)
    warnings: list[CalculationWarning] = []

    fixed: dict[int, tuple[Decimal, str]] = {
        unit.id: override_cost(ctx.overrides[unit.id], ctx.total_cost)
        for unit in ctx.units
        if unit.id in ctx.overrides
    }
    if methodology == Methodology.CONSUMPTION:
        for unit in ctx.units:
            precalculated = ctx.data.precalculated_cost(unit.id, ctx.service.id)
            if unit.id not in fixed and precalculated is not None:
                fixed[unit.id] = (
                    precalculated,
                    f"precalculated reading cost {fmt(precalculated)}",
                )
    remaining = ctx.total_cost - sum((cost for cost, _ in fixed.values()), ZERO)
    balanced = True
    discrepancy_code = None
    if remaining < 0:
        warnings.append(
            ctx.warn(
                WarningCode.OVERRIDE_MISMATCH,
                f"Manual and precalculated costs exceed the building total "
                f"{fmt(ctx.total_cost)} by {fmt(-remaining)}",
            )
        )
        remaining = ZERO
        balanced = False

    free = [(unit, base) for unit, base in zip(ctx.units, bases) if unit.id not in fixed]
    if ctx.service.divisor is not None:
        base_sum = to_decimal(ctx.service.divisor)
        balanced = False
        discrepancy_code = WarningCode.DIVISOR_DISCREPANCY
    else:
        base_sum = sum((base.value for _, base in free), ZERO)
    if not free and not warnings:
        balanced = False
        discrepancy_code = WarningCode.OVERRIDE_MISMATCH

    if free and base_sum == 0:
        warnings.append(
            ctx.warn(
                WarningCode.NO_DISTRIBUTION_BASE,
                f"Distribution bases of service '{ctx.service.name}' sum to zero; "
                f"{fmt(remaining)} was not distributed",
            )
        )
        balanced = False
        price = None
    else:
        price = remaining / base_sum if base_sum else None

    lines: list[UnitAllocation] = []
    for unit, base in zip(ctx.units, bases):
        if unit.id in fixed:
            cost, basis = fixed[unit.id]
            lines.append(UnitAllocation(unit.id, base.value, cost, basis))
        elif price is None:
            lines.append(
                UnitAllocation(unit.id, base.value, ZERO, f"{base.source}; no distribution base")
            )
        else:
            cost = base.value * price
            divisor_note = " (manual divisor)" if ctx.service.divisor is not None else ""
            lines.append(
                UnitAllocation(
                    unit.id,
                    base.value,
                    cost,
                    f"{base.source}: {fmt(remaining)} / {fmt(base_sum, 6)}{divisor_note} "
                    f"x {fmt(base.value, 6)} = {fmt(cost)}",
                    price_per_unit=price,
                    absorbs_residual=base.value != 0,
                )
            )

    return ServiceAllocation(
        service=ctx.service,
        methodology=methodology,
        total_cost=ctx.total_cost,
        total_base=base_sum,
        lines=lines,
        balanced=balanced,
        discrepancy_code=discrepancy_code,
        warnings=warnings,
    )


def allocate_fixed_per_unit(ctx: AllocationContext) -> ServiceAllocation:
    """Charge every unit the service's fixed unit price."""
    price = to_decimal(ctx.service.unit_price)
    lines: list[UnitAllocation] = []
    for unit in ctx.units:
        if unit.id in ctx.overrides:
            cost, basis = override_cost(ctx.overrides[unit.id], ctx.total_cost)
            lines.append(UnitAllocation(unit.id, Decimal(1), cost, basis))
        else:
            lines.append(
                UnitAllocation(
                    unit.id,
                    Decimal(1),
                    price,
                    f"fixed amount {fmt(price)} per unit",
                    price_per_unit=price,
                )
            )

    total_cost = ctx.total_cost
    if total_cost == 0:
        # Nothing invoiced: the fixed amounts are the total
        total_cost = sum((line.cost for line in lines), ZERO)

    return ServiceAllocation(
        service=ctx.service,
        methodology=Methodology.FIXED_PER_UNIT,
        total_cost=total_cost,
        total_base=Decimal(len(ctx.units)),
        lines=lines,
        balanced=False,
        discrepancy_code=WarningCode.FIXED_AMOUNT_DISCREPANCY,
    )


def allocate_dual_rate(ctx: AllocationContext) -> ServiceAllocation:
    """Blend a metered rate with an occupancy-based split for unmetered units.

    A metered unit pays consumption x cost_with_meter. A unit meter setting
    decides whether a unit is metered; without one, any active meter does.
    Rates recorded for the year replace the service's own. Unmetered units
    share the unmetered pool by occupancy-months. The pool is what remains
    of the building total after
    metered and overridden units; without a recorded total it is the guidance
    estimate (occupancy / 12 x guidance_number x cost_without_meter).
    """
    service = ctx.service
    with_meter, without_meter = dual_rates(service, ctx.yearly_rate)
    rate_metered = to_decimal(with_meter)
    rate_unmetered = to_decimal(without_meter)
    warnings: list[CalculationWarning] = []

    metered: list[tuple[Unit, Decimal]] = []
    unmetered: list[tuple[Unit, Decimal]] = []
    fixed: dict[int, tuple[Decimal, str]] = {}
    for unit in ctx.units:
        if unit.id in ctx.overrides:
            fixed[unit.id] = override_cost(ctx.overrides[unit.id], ctx.total_cost)
        elif ctx.data.is_metered(unit.id, service.id):
            metered.append((unit, ctx.data.consumption(unit.id, service.id)))
        else:
            unmetered.append((unit, ctx.data.occupancy(unit.id)))

    metered_total = sum((consumption * rate_metered for _, consumption in metered), ZERO)
    fixed_total = sum((cost for cost, _ in fixed.values()), ZERO)
    occupancy_sum = sum((occupancy for _, occupancy in unmetered), ZERO)

    total_cost = ctx.total_cost
    if total_cost == 0:
        if service.guidance_number is None:
            raise ConfigurationError(
                f"Service '{service.name}' has no recorded cost and no guidance number",
                service_id=service.id,
            )
        guidance = to_decimal(service.guidance_number)
        pool = occupancy_sum / MONTHS * guidance * rate_unmetered
        pool_source = (
            f"guidance {fmt(occupancy_sum, 0)} person-months / 12 x {fmt(guidance, 3)} "
            f"x {fmt(rate_unmetered, 6)}"
        )
        total_cost = metered_total + fixed_total + pool
    else:
        pool = total_cost - metered_total - fixed_total
        pool_source = f"remainder {fmt(total_cost)} - metered {fmt(metered_total)}"
        if fixed_total:
            pool_source += f" - overrides {fmt(fixed_total)}"

    if pool < 0:
        pool = ZERO
    if unmetered and occupancy_sum == 0 and pool != 0:
        warnings.append(
            ctx.warn(
                WarningCode.NO_DISTRIBUTION_BASE,
                f"Unmetered units of service '{service.name}' have no occupancy; "
                f"pool {fmt(pool)} was not distributed",
            )
        )
    price_unmetered = pool / occupancy_sum if occupancy_sum else None

    by_unit: dict[int, UnitAllocation] = {}
    for unit, consumption in metered:
        cost = consumption * rate_metered
        by_unit[unit.id] = UnitAllocation(
            unit.id,
            consumption,
            cost,
            f"metered: {fmt(consumption, 3)} x {fmt(rate_metered, 6)} = {fmt(cost)}",
            price_per_unit=rate_metered,
        )
    for unit, occupancy in unmetered:
        if price_unmetered is None:
            by_unit[unit.id] = UnitAllocation(
                unit.id, occupancy, ZERO, "unmetered: no occupancy"
            )
            continue
        cost = occupancy * price_unmetered
        by_unit[unit.id] = UnitAllocation(
            unit.id,
            occupancy,
            cost,
            f"unmetered: {pool_source} = pool {fmt(pool)}; {fmt(occupancy, 0)} / "
            f"{fmt(occupancy_sum, 0)} person-months = {fmt(cost)}",
            price_per_unit=price_unmetered,
            absorbs_residual=occupancy != 0,
        )
    for unit_id, (cost, basis) in fixed.items():
        by_unit[unit_id] = UnitAllocation(unit_id, ZERO, cost, basis)

    distributed = metered_total + fixed_total + (pool if price_unmetered is not None else ZERO)
    return ServiceAllocation(
        service=service,
        methodology=Methodology.DUAL_RATE,
        total_cost=total_cost,
        total_base=sum((c for _, c in metered), ZERO) + occupancy_sum,
        lines=[by_unit[unit.id] for unit in ctx.units],
        balanced=price_unmetered is not None and distributed == total_cost,
        discrepancy_code=WarningCode.DUAL_RATE_DEFICIT,
        warnings=warnings,
    )


def allocate_formula(ctx: AllocationContext) -> ServiceAllocation:
    """Evaluate the service's custom formula for every unit."""
    service = ctx.service
    kind = Methodology(service.formula_base or Methodology.AREA)
    bases = resolve_all_bases(ctx, kind)
    if service.divisor is not None:
        total_base = to_decimal(service.divisor)
    else:
        total_base = sum((b.value for b in bases), ZERO)

    lines: list[UnitAllocation] = []
    for unit, base in zip(ctx.units, bases):
        if unit.id in ctx.overrides:
            cost, basis = override_cost(ctx.overrides[unit.id], ctx.total_cost)
            lines.append(UnitAllocation(unit.id, base.value, cost, basis))
            continue
        variables = {
            "unit_base": base.value,
            "total_base": total_base,
            "total_cost": ctx.total_cost,
            "unit_price": to_decimal(service.unit_price),
            "unit_area": to_decimal(unit.total_area),
            "unit_share": unit.ownership_share,
            "unit_occupancy": ctx.data.occupancy(unit.id),
        }
        try:
            cost = evaluate_formula(service.formula or "", variables)
        except FormulaError as exc:
            exc.service_id = service.id
            raise
        lines.append(
            UnitAllocation(
                unit.id,
                base.value,
                cost,
                f"formula '{service.formula}' with {base.source} = {fmt(cost)}",
            )
        )

    return ServiceAllocation(
        service=service,
        methodology=Methodology.FORMULA,
        total_cost=ctx.total_cost,
        total_base=total_base,
        lines=lines,
        balanced=False,
        discrepancy_code=WarningCode.FORMULA_DISCREPANCY,
    )


def allocate_no_billing(ctx: AllocationContext) -> ServiceAllocation:
    """Record the service without charging any unit."""
    return ServiceAllocation(
        service=ctx.service,
        methodology=Methodology.NO_BILLING,
        total_cost=ctx.total_cost,
        total_base=ZERO,
        lines=[UnitAllocation(unit.id, ZERO, ZERO, "not billed") for unit in ctx.units],
        balanced=False,
    )


_ALLOCATORS: dict[Methodology, Callable[[AllocationContext], ServiceAllocation]] = {
    **{kind: allocate_proportional for kind in PROPORTIONAL_METHODOLOGIES},
    Methodology.FIXED_PER_UNIT: allocate_fixed_per_unit,
    Methodology.DUAL_RATE: allocate_dual_rate,
    Methodology.FORMULA: allocate_formula,
    Methodology.NO_BILLING: allocate_no_billing,
}


def allocate_service(ctx: AllocationContext) -> ServiceAllocation:
    """Run the allocator configured for the service."""
    try:
        methodology = Methodology(ctx.service.methodology)
    except ValueError as exc:
        raise ConfigurationError(
            f"Service '{ctx.service.name}' has unknown methodology '{ctx.service.methodology}'",
            service_id=ctx.service.id,
        ) from exc
    return _ALLOCATORS[methodology](ctx)
