"""Advance and payment aggregation for one building and year.

Prescribed advances are kept per unit and service; payments are unit-level
and only ever feed the unit aggregate, never a single service line.
"""

from collections import defaultdict
from decimal import Decimal

from settlement.core.errors import ConfigurationError
from settlement.models.billing import MONTHS_IN_YEAR
from settlement.models.unit import Unit
from settlement.services.billing_repository import BillingInputs
from settlement.services.money import ZERO, to_decimal


def _month_index(month: int, what: str) -> int:
    if not 1 <= month <= MONTHS_IN_YEAR:
        raise ConfigurationError(f"{what} has invalid month {month}")
    return month - 1


def _zero_series() -> list[Decimal]:
    return [ZERO] * MONTHS_IN_YEAR


class AdvanceLedger:
    """Twelve-month advance prescriptions and payments of a building's units."""

    def __init__(self, inputs: BillingInputs) -> None:
        self.year = inputs.year

        self._advances: dict[tuple[int, int], list[Decimal]] = defaultdict(_zero_series)
        for row in inputs.advances:
            if row.year != inputs.year:
                continue
            index = _month_index(row.month, f"Advance of unit {row.unit_id}")
            series = self._advances[(row.unit_id, row.service_id)]
            series[index] += to_decimal(row.amount)

        unit_by_symbol = {
            u.variable_symbol: u.id for u in inputs.units if u.variable_symbol
        }
        self._payments: dict[int, list[Decimal]] = defaultdict(_zero_series)
        self.unmatched_payments: list = []
        for payment in inputs.payments:
            if payment.period != inputs.year:
                continue
            unit_id = payment.unit_id
            if unit_id is None:
                unit_id = unit_by_symbol.get(payment.variable_symbol)
            if unit_id is None:
                self.unmatched_payments.append(payment)
                continue
            self._payments[unit_id][payment.paid_on.month - 1] += to_decimal(payment.amount)

    def service_advance_series(self, unit_id: int, service_id: int) -> list[Decimal]:
        """Monthly advances prescribed to the unit for one service (12 elements)."""
        return list(self._advances.get((unit_id, service_id)) or _zero_series())

    def prescribed_advances(self, unit_id: int, service_id: int) -> Decimal:
        """Sum of the twelve monthly advances; missing months count as 0."""
        return sum(self.service_advance_series(unit_id, service_id), ZERO)

    def monthly_prescribed(self, unit: Unit, service_ids: list[int]) -> list[Decimal]:
        """Monthly prescriptions of the unit summed over the given services."""
        series = _zero_series()
        for service_id in service_ids:
            for index, amount in enumerate(self.service_advance_series(unit.id, service_id)):
                series[index] += amount
        return series

    def monthly_payments(self, unit: Unit) -> list[Decimal]:
        """Payments of the unit by month of payment (12 elements)."""
        return list(self._payments.get(unit.id) or _zero_series())

    def total_paid(self, unit: Unit) -> Decimal:
        """Sum of the unit's payments for the year."""
        return sum(self.monthly_payments(unit), ZERO)
