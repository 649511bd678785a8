"""Apportionment engine: one settlement run for a building and year.

The run reads a snapshot through the repository, validates every unit and
service before computing anything, allocates each service, composes the unit
results and stores them in one transaction. A failure at any point leaves the
previously stored results untouched.
"""

import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import Callable

from settlement.core.config import Settings
from settlement.core.errors import FormulaError
from settlement.models.billing import BillingPeriod
from settlement.models.enums import WarningCode
from settlement.models.service import Service, ServiceUnitOverride
from settlement.schemas.billing import CalculationSummary, CalculationWarning, ServiceTotal
from settlement.services.advances import AdvanceLedger
from settlement.services.billing_repository import BillingRepository
from settlement.services.composer import (
    LineItem,
    UnitSettlement,
    build_line_items,
    compose_unit_settlement,
    round_allocation,
    service_total,
)
from settlement.services.distribution_base import (
    MISSING_PARAMETER_ERROR,
    YearData,
    validate_unit,
)
from settlement.services.methodology import (
    AllocationContext,
    allocate_service,
    building_total_cost,
    validate_service,
)

logger = logging.getLogger(__name__)

FORMULA_ABORT = "abort"
FORMULA_SKIP = "skip"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BillingEngine:
    """Computes and stores the settlement of one building for one year.

    Args:
        repository: Storage the engine reads from and writes to
        formula_strictness: "abort" fails the run on a formula error,
            "skip" drops the service and records a warning
        missing_parameter_policy: "error" or "zero" for undefined unit parameters
        max_workers: Threads used to resolve distribution bases; 1 is sequential
        clock: Source of the generated_at timestamp
    """

    def __init__(
        self,
        repository: BillingRepository,
        formula_strictness: str = FORMULA_ABORT,
        missing_parameter_policy: str = MISSING_PARAMETER_ERROR,
        max_workers: int = 1,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.formula_strictness = formula_strictness
        self.missing_parameter_policy = missing_parameter_policy
        self.max_workers = max(1, max_workers)
        self.clock = clock or _utcnow

    @classmethod
    def from_settings(cls, repository: BillingRepository, settings: Settings) -> "BillingEngine":
        """Create an engine configured from application settings."""
        return cls(
            repository,
            formula_strictness=settings.FORMULA_STRICTNESS,
            missing_parameter_policy=settings.MISSING_PARAMETER_POLICY,
            max_workers=settings.ENGINE_MAX_WORKERS,
        )

    def ensure_period(self, building_id: int, year: int) -> BillingPeriod:
        """Open the billing period in DRAFT state if it does not exist yet."""
        return self.repository.ensure_period(building_id, year)

    def calculate(self, building_id: int, year: int) -> CalculationSummary:
        """Run the settlement and replace the stored results of the period.

        Raises:
            BuildingNotFoundError: Unknown building
            ConfigurationError: A unit or service cannot be processed
            FormulaError: A custom formula failed and strictness is "abort"
            PersistenceError: The results could not be stored
        """
        logger.info("Calculating settlement of building %s for %s", building_id, year)
        inputs = self.repository.load_inputs(building_id, year)
        data = YearData(inputs)
        units = data.units
        services = sorted(inputs.services, key=lambda s: (s.order, s.id))

        overrides: dict[int, dict[int, ServiceUnitOverride]] = defaultdict(dict)
        for override in inputs.overrides:
            overrides[override.service_id][override.unit_id] = override
        yearly_rates = {
            rate.service_id: rate for rate in inputs.yearly_rates if rate.year == year
        }

        warnings: list[CalculationWarning] = []
        for unit in units:
            validate_unit(unit)
        runnable: list[Service] = []
        for service in services:
            try:
                validate_service(
                    service,
                    list(overrides[service.id].values()),
                    yearly_rates.get(service.id),
                )
            except FormulaError as exc:
                warnings.append(self._formula_failed(service, exc))
                continue
            runnable.append(service)

        ledger = AdvanceLedger(inputs)
        for payment in ledger.unmatched_payments:
            logger.warning(
                "Payment %s with variable symbol %s matches no unit of building %s",
                payment.id,
                payment.variable_symbol,
                building_id,
            )

        unit_lines: dict[int, list[LineItem]] = defaultdict(list)
        repair_fund_lines: dict[int, list[LineItem]] = defaultdict(list)
        totals: list[ServiceTotal] = []

        workers = min(self.max_workers, len(units))
        pool = ThreadPoolExecutor(max_workers=workers) if workers > 1 else nullcontext()
        with pool as executor:
            for service in runnable:
                ctx = AllocationContext(
                    service=service,
                    units=units,
                    data=data,
                    total_cost=building_total_cost(service, inputs.costs),
                    overrides=overrides[service.id],
                    yearly_rate=yearly_rates.get(service.id),
                    missing_parameter=self.missing_parameter_policy,
                    executor=executor,
                )
                try:
                    allocation = allocate_service(ctx)
                except FormulaError as exc:
                    warnings.append(self._formula_failed(service, exc))
                    continue

                costs, rounding_warnings = round_allocation(allocation)
                warnings.extend(allocation.warnings)
                warnings.extend(rounding_warnings)
                total = service_total(allocation, costs)
                totals.append(total)
                logger.info(
                    "Service %s (%s): building total %s, distributed %s",
                    service.name,
                    allocation.methodology.value,
                    total.building_total_cost,
                    total.distributed_cost,
                )

                target = repair_fund_lines if service.is_repair_fund else unit_lines
                for item in build_line_items(allocation, costs, ledger):
                    target[item.unit_id].append(item)

        service_ids = [s.id for s in services]
        service_names = {s.id: s.name for s in services}
        settlements: list[UnitSettlement] = [
            compose_unit_settlement(
                unit,
                unit_lines[unit.id],
                repair_fund_lines[unit.id],
                ledger,
                service_ids,
                service_names,
            )
            for unit in units
        ]

        for warning in warnings:
            logger.warning(
                "[%s] service %s: %s", warning.code.value, warning.service_id, warning.message
            )

        generated_at = self.clock()
        period_id = self.repository.replace_period_results(
            building_id, year, settlements, generated_at
        )
        logger.info(
            "Stored %s unit results for building %s, %s (%s warnings)",
            len(settlements),
            building_id,
            year,
            len(warnings),
        )

        return CalculationSummary(
            billing_period_id=period_id,
            building_id=building_id,
            year=year,
            unit_count=len(units),
            service_count=len(totals),
            per_service_totals=totals,
            generated_at=generated_at,
            warnings=warnings,
        )

    def _formula_failed(self, service: Service, exc: FormulaError) -> CalculationWarning:
        if exc.service_id is None:
            exc.service_id = service.id
        if self.formula_strictness != FORMULA_SKIP:
            raise exc
        return CalculationWarning(
            code=WarningCode.FORMULA_SKIPPED,
            service_id=service.id,
            message=f"Formula of service '{service.name}' was skipped: {exc}",
        )
