"""Settlement composer: turns service allocations into line items and unit results.

Costs are rounded to whole cents here and nowhere earlier. A balanced
allocation keeps its exact total: the rounding residual goes onto the last
residual-absorbing line in unit-number order.
"""

from dataclasses import dataclass, field
from decimal import Decimal

from settlement.models.unit import Unit
from settlement.schemas.billing import CalculationWarning, ServiceTotal
from settlement.services.advances import AdvanceLedger
from settlement.services.methodology import ServiceAllocation
from settlement.services.money import MONEY_ZERO, fmt, quantize_cent, quantize_places


@dataclass
class LineItem:
    """One unit's figures for one service, as persisted."""

    service_id: int
    unit_id: int
    methodology: str
    distribution_base: Decimal
    building_total_base: Decimal
    building_total_cost: Decimal
    unit_price_per_unit: Decimal | None
    unit_cost: Decimal
    unit_advance: Decimal
    unit_balance: Decimal
    calculation_basis: str
    merge_with_next: bool = False


@dataclass
class UnitSettlement:
    """Annual settlement of one unit."""

    unit_id: int
    total_cost: Decimal
    total_advance_prescribed: Decimal
    total_advance_paid: Decimal
    repair_fund: Decimal
    repair_fund_basis: str | None
    result: Decimal
    monthly_prescribed: list[Decimal]
    monthly_paid: list[Decimal]
    lines: list[LineItem] = field(default_factory=list)


def round_allocation(
    allocation: ServiceAllocation,
) -> tuple[dict[int, Decimal], list[CalculationWarning]]:
    """Round every unit cost of an allocation to cents.

    Returns:
        Rounded cost per unit id and the warnings raised while reconciling
        the rounded lines with the building total
    """
    costs = {line.unit_id: quantize_cent(line.cost) for line in allocation.lines}
    target = quantize_cent(allocation.total_cost)
    distributed = sum(costs.values(), MONEY_ZERO)
    warnings: list[CalculationWarning] = []

    if allocation.balanced:
        residual = target - distributed
        absorbers = [line for line in allocation.lines if line.absorbs_residual]
        if residual and absorbers:
            costs[absorbers[-1].unit_id] += residual
        return costs, warnings

    if allocation.discrepancy_code is not None and distributed != target:
        warnings.append(
            CalculationWarning(
                code=allocation.discrepancy_code,
                service_id=allocation.service.id,
                message=(
                    f"Service '{allocation.service.name}' distributed {fmt(distributed)} "
                    f"of {fmt(target)} (difference {fmt(target - distributed)})"
                ),
            )
        )
    return costs, warnings


def build_line_items(
    allocation: ServiceAllocation,
    costs: dict[int, Decimal],
    ledger: AdvanceLedger,
) -> list[LineItem]:
    """Line items of one service, one per unit, in unit order."""
    service = allocation.service
    items: list[LineItem] = []
    for line in allocation.lines:
        cost = costs[line.unit_id]
        advance = quantize_cent(ledger.prescribed_advances(line.unit_id, service.id))
        items.append(
            LineItem(
                service_id=service.id,
                unit_id=line.unit_id,
                methodology=allocation.methodology.value,
                distribution_base=quantize_places(line.base),
                building_total_base=quantize_places(allocation.total_base),
                building_total_cost=quantize_cent(allocation.total_cost),
                unit_price_per_unit=quantize_places(line.price_per_unit),
                unit_cost=cost,
                unit_advance=advance,
                unit_balance=advance - cost,
                calculation_basis=line.basis,
                merge_with_next=bool(service.merge_with_next),
            )
        )
    return items


def service_total(allocation: ServiceAllocation, costs: dict[int, Decimal]) -> ServiceTotal:
    """Building-level figures of one allocated service."""
    return ServiceTotal(
        service_id=allocation.service.id,
        name=allocation.service.name,
        methodology=allocation.methodology,
        building_total_cost=quantize_cent(allocation.total_cost),
        distributed_cost=sum(costs.values(), MONEY_ZERO),
        is_repair_fund=bool(allocation.service.is_repair_fund),
    )


def compose_unit_settlement(
    unit: Unit,
    lines: list[LineItem],
    repair_fund_lines: list[LineItem],
    ledger: AdvanceLedger,
    service_ids: list[int],
    service_names: dict[int, str] | None = None,
) -> UnitSettlement:
    """Aggregate a unit's line items, advances and payments into its result.

    Repair fund services are charged separately and never become line items.
    The result is paid - cost - repair fund: positive means the owner gets a
    refund, negative means the owner owes.
    """
    names = service_names or {}
    total_cost = sum((line.unit_cost for line in lines), MONEY_ZERO)
    repair_fund = sum((line.unit_cost for line in repair_fund_lines), MONEY_ZERO)
    repair_fund_basis = "; ".join(
        f"{names.get(line.service_id, line.service_id)}: {line.calculation_basis}"
        for line in repair_fund_lines
    )

    monthly_prescribed = [
        quantize_cent(v) for v in ledger.monthly_prescribed(unit, service_ids)
    ]
    monthly_paid = [quantize_cent(v) for v in ledger.monthly_payments(unit)]
    total_prescribed = sum(monthly_prescribed, MONEY_ZERO)
    total_paid = sum(monthly_paid, MONEY_ZERO)

    return UnitSettlement(
        unit_id=unit.id,
        total_cost=total_cost,
        total_advance_prescribed=total_prescribed,
        total_advance_paid=total_paid,
        repair_fund=repair_fund,
        repair_fund_basis=repair_fund_basis or None,
        result=total_paid - total_cost - repair_fund,
        monthly_prescribed=monthly_prescribed,
        monthly_paid=monthly_paid,
        lines=lines,
    )
