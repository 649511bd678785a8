"""Tests for the per-methodology allocators."""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from factories import (
    make_cost,
    make_inputs,
    make_meter,
    make_meter_setting,
    make_override,
    make_person_months,
    make_reading,
    make_service,
    make_unit,
    make_yearly_rate,
)
from settlement.core.errors import ConfigurationError, FormulaError
from settlement.models.enums import Methodology, WarningCode
from settlement.services.distribution_base import YearData
from settlement.services.methodology import (
    AllocationContext,
    allocate_service,
    building_total_cost,
    validate_service,
)


def _allocate(service, units, total, overrides=(), executor=None, yearly_rate=None, **rows):
    data = YearData(make_inputs(units=units, **rows))
    ctx = AllocationContext(
        service=service,
        units=data.units,
        data=data,
        total_cost=Decimal(total),
        overrides={o.unit_id: o for o in overrides},
        yearly_rate=yearly_rate,
        executor=executor,
    )
    return allocate_service(ctx)


def _costs(allocation):
    return {line.unit_id: line.cost for line in allocation.lines}


def test_building_total_prefers_manual_cost():
    """Test that the building total prefers the manual cost."""
    costs = [make_cost(1, 1, "700"), make_cost(2, 1, "300"), make_cost(3, 2, "50")]

    assert building_total_cost(make_service(1), costs) == Decimal("1000")
    assert building_total_cost(make_service(1, manual_cost=Decimal("250")), costs) == 250


def test_area_split_is_proportional():
    """Test that the area split is proportional."""
    units = [make_unit(1, total_area="60"), make_unit(2, total_area="40")]

    allocation = _allocate(make_service(1, Methodology.AREA), units, "10000")

    assert _costs(allocation) == {1: Decimal("6000"), 2: Decimal("4000")}
    assert allocation.balanced
    assert allocation.total_base == Decimal("100")


def test_cost_override_keeps_fixed_amount_and_splits_the_rest():
    """Test that a cost override is kept and the rest is split."""
    units = [make_unit(1, total_area="60"), make_unit(2, total_area="40")]

    allocation = _allocate(
        make_service(1, Methodology.AREA),
        units,
        "10000",
        overrides=[make_override(1, 1, manual_cost="500")],
    )

    costs = _costs(allocation)
    assert costs[1] == Decimal("500")
    assert costs[2] == Decimal("9500")
    assert "manual cost override" in allocation.lines[0].basis


def test_share_override_takes_fraction_of_total():
    """Test that a share override takes a fraction of the total."""
    units = [make_unit(1, total_area="50"), make_unit(2, total_area="50")]

    allocation = _allocate(
        make_service(1, Methodology.AREA),
        units,
        "1000",
        overrides=[make_override(1, 1, manual_share="0.25")],
    )

    assert _costs(allocation) == {1: Decimal("250.00"), 2: Decimal("750.00")}


def test_overrides_above_total_warn_and_charge_others_nothing():
    """Test overrides above the total."""
    units = [make_unit(1, total_area="50"), make_unit(2, total_area="50")]

    allocation = _allocate(
        make_service(1, Methodology.AREA),
        units,
        "400",
        overrides=[make_override(1, 1, manual_cost="500")],
    )

    assert _costs(allocation)[2] == 0
    assert [w.code for w in allocation.warnings] == [WarningCode.OVERRIDE_MISMATCH]
    assert not allocation.balanced


def test_zero_bases_give_zero_costs_and_a_warning():
    """Test that zero bases give zero costs and a warning."""
    units = [make_unit(1), make_unit(2)]
    service = make_service(1, Methodology.CONSUMPTION)

    allocation = _allocate(service, units, "1200")

    assert _costs(allocation) == {1: 0, 2: 0}
    assert allocation.warnings[0].code == WarningCode.NO_DISTRIBUTION_BASE


def test_unit_with_zero_consumption_pays_nothing():
    """Test that a unit with zero consumption pays nothing."""
    units = [make_unit(1), make_unit(2)]

    allocation = _allocate(
        make_service(7, Methodology.CONSUMPTION),
        units,
        "300",
        meters=[make_meter(1, 1, 7), make_meter(2, 2, 7)],
        readings=[make_reading(1, 1, "0"), make_reading(2, 2, "12")],
    )

    assert _costs(allocation) == {1: Decimal("0"), 2: Decimal("300")}
    assert not allocation.lines[0].absorbs_residual


def test_divisor_replaces_base_sum_and_unbalances():
    """Test that a divisor replaces the base sum."""
    units = [make_unit(1, total_area="60"), make_unit(2, total_area="40")]
    service = make_service(1, Methodology.AREA, divisor=Decimal("200"))

    allocation = _allocate(service, units, "10000")

    assert _costs(allocation) == {1: Decimal("3000"), 2: Decimal("2000")}
    assert not allocation.balanced
    assert allocation.discrepancy_code == WarningCode.DIVISOR_DISCREPANCY


def test_equal_and_residents():
    """Test equal and resident splits."""
    units = [make_unit(1, resident_count=1), make_unit(2, resident_count=3)]

    equal = _allocate(make_service(1, Methodology.EQUAL), units, "100")
    residents = _allocate(make_service(2, Methodology.RESIDENTS), units, "100")

    assert _costs(equal) == {1: Decimal("50"), 2: Decimal("50")}
    assert _costs(residents) == {1: Decimal("25"), 2: Decimal("75")}


def test_fixed_per_unit_charges_unit_price():
    """Test that fixed per unit charges the unit price."""
    units = [make_unit(1), make_unit(2), make_unit(3)]
    service = make_service(1, Methodology.FIXED_PER_UNIT, unit_price=Decimal("150"))

    allocation = _allocate(service, units, "0")

    assert set(_costs(allocation).values()) == {Decimal("150")}
    assert allocation.total_cost == Decimal("450")
    assert allocation.discrepancy_code == WarningCode.FIXED_AMOUNT_DISCREPANCY


def test_dual_rate_metered_unit_uses_metered_rate_despite_occupancy():
    """Test that a metered unit pays the metered rate."""
    units = [make_unit(1), make_unit(2), make_unit(3)]
    service = make_service(
        4,
        Methodology.DUAL_RATE,
        cost_with_meter=Decimal("100"),
        cost_without_meter=Decimal("120"),
        guidance_number=Decimal("35"),
    )

    allocation = _allocate(
        service,
        units,
        "5800",
        meters=[make_meter(1, 1, 4)],
        readings=[make_reading(1, 1, "10")],
        person_months=make_person_months(1, 4)
        + make_person_months(2, 1)
        + make_person_months(3, 3),
    )

    costs = _costs(allocation)
    assert costs[1] == Decimal("1000")
    assert allocation.lines[0].basis.startswith("metered")
    # Pool of 4800 split 12:36 by person-months
    assert costs[2] == Decimal("1200")
    assert costs[3] == Decimal("3600")
    assert allocation.balanced


def test_dual_rate_inactive_meter_uses_unmetered_path():
    """Test that an inactive meter uses the unmetered path."""
    units = [make_unit(1), make_unit(2)]
    service = make_service(
        4,
        Methodology.DUAL_RATE,
        cost_with_meter=Decimal("100"),
        cost_without_meter=Decimal("120"),
    )

    allocation = _allocate(
        service,
        units,
        "600",
        meters=[make_meter(1, 1, 4, is_active=False)],
        readings=[make_reading(1, 1, "50")],
        person_months=make_person_months(1, 1) + make_person_months(2, 1),
    )

    assert _costs(allocation) == {1: Decimal("300"), 2: Decimal("300")}
    assert all(line.basis.startswith("unmetered") for line in allocation.lines)


def test_dual_rate_without_cost_uses_guidance_estimate():
    """Test the guidance estimate without a recorded cost."""
    units = [make_unit(1)]
    service = make_service(
        4,
        Methodology.DUAL_RATE,
        cost_with_meter=Decimal("100"),
        cost_without_meter=Decimal("50"),
        guidance_number=Decimal("36"),
    )

    allocation = _allocate(service, units, "0", person_months=make_person_months(1, 2))

    # 24 person-months / 12 x 36 x 50
    assert _costs(allocation) == {1: Decimal("3600")}
    assert allocation.total_cost == Decimal("3600")


def test_dual_rate_without_cost_or_guidance_fails():
    """Test dual rate without cost or guidance number."""
    service = make_service(
        4, Methodology.DUAL_RATE, cost_with_meter=Decimal("1"), cost_without_meter=Decimal("1")
    )

    with pytest.raises(ConfigurationError):
        _allocate(service, [make_unit(1)], "0")


def test_dual_rate_metered_above_total_is_a_deficit():
    """Test that metered costs above the total are a deficit."""
    units = [make_unit(1), make_unit(2)]
    service = make_service(
        4,
        Methodology.DUAL_RATE,
        cost_with_meter=Decimal("100"),
        cost_without_meter=Decimal("100"),
    )

    allocation = _allocate(
        service,
        units,
        "500",
        meters=[make_meter(1, 1, 4)],
        readings=[make_reading(1, 1, "8")],
        person_months=make_person_months(2, 1),
    )

    assert _costs(allocation) == {1: Decimal("800"), 2: Decimal("0")}
    assert not allocation.balanced
    assert allocation.discrepancy_code == WarningCode.DUAL_RATE_DEFICIT


def test_formula_evaluates_per_unit():
    """Test that the formula is evaluated per unit."""
    units = [make_unit(1, total_area="60"), make_unit(2, total_area="40")]
    service = make_service(
        1, Methodology.FORMULA, formula="total_cost * unit_base / total_base + 10"
    )

    allocation = _allocate(service, units, "1000")

    assert _costs(allocation) == {1: Decimal("610"), 2: Decimal("410")}
    assert allocation.discrepancy_code == WarningCode.FORMULA_DISCREPANCY


def test_formula_error_carries_service_id():
    """Test that a formula error carries the service id."""
    units = [make_unit(1, total_area="0")]
    service = make_service(9, Methodology.FORMULA, formula="total_cost / unit_base")

    with pytest.raises(FormulaError) as exc_info:
        _allocate(service, units, "100")
    assert exc_info.value.service_id == 9


def test_no_billing_charges_nothing():
    """Test that no-billing charges nothing."""
    units = [make_unit(1, total_area="10")]

    allocation = _allocate(make_service(1, Methodology.NO_BILLING), units, "999")

    assert _costs(allocation) == {1: 0}
    assert allocation.lines[0].basis == "not billed"


def test_executor_keeps_unit_order():
    """Test that the executor keeps unit order."""
    units = [make_unit(i, total_area=str(i)) for i in range(1, 9)]

    with ThreadPoolExecutor(max_workers=4) as executor:
        parallel = _allocate(make_service(1, Methodology.AREA), units, "3600", executor=executor)
    sequential = _allocate(make_service(1, Methodology.AREA), units, "3600")

    assert [line.unit_id for line in parallel.lines] == list(range(1, 9))
    assert _costs(parallel) == _costs(sequential)


@pytest.mark.parametrize(
    ("fields", "message"),
    [
        ({"methodology": "bogus"}, "unknown methodology"),
        ({"methodology": "parameter"}, "parameter"),
        ({"methodology": "fixed_per_unit"}, "unit price"),
        ({"methodology": "dual_rate", "cost_with_meter": Decimal("1")}, "dual-rate"),
        ({"methodology": "formula", "formula": "1", "formula_base": "formula"}, "formula base"),
        ({"methodology": "area", "divisor": Decimal("0")}, "divisor"),
    ],
)
def test_validate_service_rejects_bad_configuration(fields, message):
    """Test that bad service configuration is rejected."""
    service = make_service(1, Methodology.AREA)
    for name, value in fields.items():
        setattr(service, name, value)

    with pytest.raises(ConfigurationError, match=message):
        validate_service(service)


def test_validate_service_rejects_invalid_formula():
    """Test that an invalid formula is rejected."""
    service = make_service(1, Methodology.FORMULA, formula="unit_base.real")

    with pytest.raises(FormulaError) as exc_info:
        validate_service(service)
    assert exc_info.value.service_id == 1


def test_validate_service_checks_overrides():
    """Test override validation."""
    service = make_service(1, Methodology.AREA)

    with pytest.raises(ConfigurationError):
        validate_service(service, [make_override(1, 1)])
    with pytest.raises(ConfigurationError):
        validate_service(service, [make_override(1, 1, manual_share="1.5")])
    validate_service(service, [make_override(1, 1, manual_share="0.5")])


def test_precalculated_reading_cost_replaces_consumption_split():
    """Test that a reading's precalculated cost is charged as is and the rest is split."""
    units = [make_unit(1), make_unit(2), make_unit(3)]

    allocation = _allocate(
        make_service(2, Methodology.CONSUMPTION),
        units,
        "1050",
        meters=[make_meter(1, 1, 2), make_meter(2, 2, 2), make_meter(3, 3, 2)],
        readings=[
            make_reading(1, 1, "10", precalculated_cost="250"),
            make_reading(2, 2, "30"),
            make_reading(3, 3, "10"),
        ],
    )

    assert _costs(allocation) == {1: Decimal("250"), 2: Decimal("600"), 3: Decimal("200")}
    assert allocation.lines[0].basis == "precalculated reading cost 250.00"
    assert not allocation.lines[0].absorbs_residual
    assert allocation.total_base == Decimal("40")
    assert allocation.balanced


def test_override_wins_over_precalculated_reading_cost():
    """Test that a manual override takes precedence over a precalculated cost."""
    units = [make_unit(1), make_unit(2)]

    allocation = _allocate(
        make_service(2, Methodology.CONSUMPTION),
        units,
        "1000",
        overrides=[make_override(2, 1, manual_cost="100")],
        meters=[make_meter(1, 1, 2), make_meter(2, 2, 2)],
        readings=[
            make_reading(1, 1, "10", precalculated_cost="250"),
            make_reading(2, 2, "30"),
        ],
    )

    assert _costs(allocation) == {1: Decimal("100"), 2: Decimal("900")}


def test_precalculated_costs_above_total_are_a_mismatch():
    """Test that precalculated costs exceeding the total are reported."""
    units = [make_unit(1), make_unit(2)]

    allocation = _allocate(
        make_service(2, Methodology.CONSUMPTION),
        units,
        "100",
        meters=[make_meter(1, 1, 2), make_meter(2, 2, 2)],
        readings=[
            make_reading(1, 1, "10", precalculated_cost="250"),
            make_reading(2, 2, "30"),
        ],
    )

    assert _costs(allocation) == {1: Decimal("250"), 2: Decimal("0")}
    assert [w.code for w in allocation.warnings] == [WarningCode.OVERRIDE_MISMATCH]
    assert not allocation.balanced


def test_dual_rate_uses_rates_of_the_year():
    """Test that a yearly rate replaces the service rate it sets and keeps the other."""
    units = [make_unit(1), make_unit(2), make_unit(3)]
    service = make_service(
        4,
        Methodology.DUAL_RATE,
        cost_with_meter=Decimal("100"),
        cost_without_meter=Decimal("120"),
    )

    allocation = _allocate(
        service,
        units,
        "5800",
        yearly_rate=make_yearly_rate(4, cost_with_meter="80"),
        meters=[make_meter(1, 1, 4)],
        readings=[make_reading(1, 1, "10")],
        person_months=make_person_months(2, 1) + make_person_months(3, 3),
    )

    # Metered 10 x 80, pool of 5000 split 12:36 by person-months
    assert _costs(allocation) == {1: Decimal("800"), 2: Decimal("1250"), 3: Decimal("3750")}
    assert allocation.lines[0].price_per_unit == Decimal("80")


def test_dual_rate_meter_setting_overrides_meters():
    """Test that a unit meter setting decides the metered path."""
    units = [make_unit(1), make_unit(2)]
    service = make_service(
        4,
        Methodology.DUAL_RATE,
        cost_with_meter=Decimal("100"),
        cost_without_meter=Decimal("100"),
    )

    allocation = _allocate(
        service,
        units,
        "600",
        meters=[make_meter(1, 1, 4)],
        readings=[make_reading(1, 1, "3")],
        meter_settings=[make_meter_setting(1, 4, False), make_meter_setting(2, 4, True)],
        person_months=make_person_months(1, 1) + make_person_months(2, 1),
    )

    assert _costs(allocation) == {1: Decimal("600"), 2: Decimal("0")}
    assert allocation.lines[0].basis.startswith("unmetered")
    assert allocation.lines[1].basis.startswith("metered")


def test_validate_service_takes_dual_rates_of_the_year():
    """Test that a yearly rate can supply a rate the service lacks."""
    service = make_service(
        4, Methodology.DUAL_RATE, cost_with_meter=None, cost_without_meter=Decimal("1")
    )

    with pytest.raises(ConfigurationError, match="dual-rate"):
        validate_service(service)
    validate_service(service, yearly_rate=make_yearly_rate(4, cost_with_meter="2"))
