"""Tests for advance and payment aggregation."""

from datetime import date
from decimal import Decimal

import pytest

from factories import YEAR, make_advances, make_inputs, make_payment, make_unit
from settlement.core.errors import ConfigurationError
from settlement.models.advance import AdvanceMonthly
from settlement.services.advances import AdvanceLedger


def test_twelve_monthly_advances_sum_to_prescribed_total():
    """Test that twelve monthly advances add up to the prescribed total."""
    unit = make_unit(1)
    ledger = AdvanceLedger(make_inputs(units=[unit], advances=make_advances(1, 5, "100")))

    assert ledger.prescribed_advances(1, 5) == Decimal("1200")


def test_missing_months_count_as_zero():
    """Test that months without an advance count as zero."""
    unit = make_unit(1)
    ledger = AdvanceLedger(
        make_inputs(units=[unit], advances=make_advances(1, 5, "250", months=[1, 2, 12]))
    )

    series = ledger.service_advance_series(1, 5)

    assert len(series) == 12
    assert series[0] == series[11] == Decimal("250")
    assert series[5] == 0
    assert ledger.prescribed_advances(1, 5) == Decimal("750")
    assert ledger.prescribed_advances(1, 6) == 0


def test_advances_of_other_years_are_ignored():
    """Test that advances of other years are ignored."""
    unit = make_unit(1)
    ledger = AdvanceLedger(
        make_inputs(units=[unit], advances=make_advances(1, 5, "100", year=YEAR - 1))
    )

    assert ledger.prescribed_advances(1, 5) == 0


def test_invalid_month_is_rejected():
    """Test that a month outside 1-12 is rejected."""
    unit = make_unit(1)
    bad = AdvanceMonthly(unit_id=1, service_id=5, year=YEAR, month=13, amount=Decimal("1"))

    with pytest.raises(ConfigurationError):
        AdvanceLedger(make_inputs(units=[unit], advances=[bad]))


def test_monthly_prescribed_sums_services():
    """Test that monthly prescriptions add up across services."""
    unit = make_unit(1)
    ledger = AdvanceLedger(
        make_inputs(
            units=[unit],
            advances=make_advances(1, 5, "100") + make_advances(1, 6, "40", months=[3]),
        )
    )

    series = ledger.monthly_prescribed(unit, [5, 6])

    assert series[2] == Decimal("140")
    assert sum(series) == Decimal("1240")
    assert ledger.monthly_prescribed(unit, [6])[0] == 0


def test_payments_matched_by_unit_or_variable_symbol():
    """Test payment matching by unit or variable symbol."""
    first = make_unit(1, variable_symbol="1001")
    second = make_unit(2, variable_symbol="1002")
    ledger = AdvanceLedger(
        make_inputs(
            units=[first, second],
            payments=[
                make_payment(1, "500", date(YEAR, 1, 20), unit_id=1),
                make_payment(2, "300", date(YEAR, 1, 25), variable_symbol="1001"),
                make_payment(3, "700", date(YEAR, 6, 1), variable_symbol="1002"),
                make_payment(4, "900", date(YEAR, 6, 1), variable_symbol="9999"),
                make_payment(5, "100", date(YEAR - 1, 12, 30), unit_id=1, period=YEAR - 1),
            ],
        )
    )

    assert ledger.monthly_payments(first)[0] == Decimal("800")
    assert ledger.total_paid(first) == Decimal("800")
    assert ledger.monthly_payments(second)[5] == Decimal("700")
    assert [p.id for p in ledger.unmatched_payments] == [4]


def test_payment_series_always_has_twelve_months():
    """Test that the payment series always has twelve months."""
    unit = make_unit(1)
    ledger = AdvanceLedger(make_inputs(units=[unit]))

    assert ledger.monthly_payments(unit) == [0] * 12
    assert ledger.total_paid(unit) == 0
