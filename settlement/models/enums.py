"""Enum definitions for services, billing periods and calculation warnings."""

from enum import Enum


class Methodology(str, Enum):
    """How a service's building-level cost is turned into per-unit costs."""

    AREA = "area"
    SHARE = "share"
    CONSUMPTION = "consumption"
    PARAMETER = "parameter"
    OCCUPANCY = "occupancy"
    RESIDENTS = "residents"
    EQUAL = "equal"
    FIXED_PER_UNIT = "fixed_per_unit"
    DUAL_RATE = "dual_rate"
    FORMULA = "formula"
    NO_BILLING = "no_billing"


# Kinds that distribute by a resolved per-unit base
PROPORTIONAL_METHODOLOGIES = frozenset(
    {
        Methodology.AREA,
        Methodology.SHARE,
        Methodology.CONSUMPTION,
        Methodology.PARAMETER,
        Methodology.OCCUPANCY,
        Methodology.RESIDENTS,
        Methodology.EQUAL,
    }
)


class AreaSource(str, Enum):
    """Which unit area an AREA service reads."""

    TOTAL = "total"
    FLOOR = "floor"


class DataSourceColumn(str, Enum):
    """Which meter reading column a CONSUMPTION service reads."""

    CONSUMPTION = "consumption"  # Derived consumption for the period
    VALUE = "value"  # Raw reading value


class BillingPeriodStatus(str, Enum):
    """Lifecycle of a billing period."""

    DRAFT = "draft"
    CALCULATED = "calculated"


class WarningCode(str, Enum):
    """Non-fatal findings recorded during a calculation."""

    NO_DISTRIBUTION_BASE = "no_distribution_base"
    DIVISOR_DISCREPANCY = "divisor_discrepancy"
    OVERRIDE_MISMATCH = "override_mismatch"
    FIXED_AMOUNT_DISCREPANCY = "fixed_amount_discrepancy"
    DUAL_RATE_DEFICIT = "dual_rate_deficit"
    FORMULA_DISCREPANCY = "formula_discrepancy"
    FORMULA_SKIPPED = "formula_skipped"
