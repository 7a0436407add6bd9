import itertools
import math

import pytest

from stacker.calculations import (
    aggregate,
    aggregate_by_metal,
    compute_fine_weight,
    distribution,
    distribution_percentages,
    group_weight_by,
    metals_in_stack,
    stack_value,
    total_nominal_weight,
    value_change,
    weights_by_metal,
)
from stacker.models import DistributionKey, Holding, MetalType, PortfolioMetrics
from stacker.numbers import to_number_or_zero


# --- to_number_or_zero ---


@pytest.mark.parametrize(
    "value, expected",
    [
        (3, 3.0),
        (2.5, 2.5),
        ("4.25", 4.25),
        (" 7 ", 7.0),
        ("", 0.0),
        ("abc", 0.0),
        (None, 0.0),
        (True, 0.0),
        (float("nan"), 0.0),
        ([1], 0.0),
        (-2, -2.0),
    ],
)
def test_to_number_or_zero(value, expected):
    assert to_number_or_zero(value) == expected


# --- compute_fine_weight ---


def test_fine_weight_applies_purity():
    assert compute_fine_weight({"quantity": 10, "ozPerUnit": 1, "purity": 0.999}) == pytest.approx(9.99)


def test_fine_weight_zero_quantity():
    assert compute_fine_weight({"quantity": 0, "ozPerUnit": 5, "purity": 1}) == 0


def test_fine_weight_junk_silver(dimes):
    assert compute_fine_weight(dimes) == pytest.approx(1.2852, abs=1e-6)


def test_fine_weight_missing_purity_is_full_purity():
    assert compute_fine_weight({"quantity": 2, "ozPerUnit": 5}) == 10
    assert compute_fine_weight({"quantity": 2, "ozPerUnit": 5, "purity": None}) == 10


def test_fine_weight_malformed_numbers_are_zero():
    assert compute_fine_weight({"quantity": "lots", "ozPerUnit": 1}) == 0
    assert compute_fine_weight({"quantity": 3, "ozPerUnit": None}) == 0
    assert compute_fine_weight({}) == 0


def test_fine_weight_reads_legacy_weight_key():
    assert compute_fine_weight({"quantity": "4", "weight": "2.5", "purity": "0.9"}) == pytest.approx(9.0)


def test_fine_weight_out_of_range_inputs_are_not_rejected():
    assert compute_fine_weight({"quantity": 2, "ozPerUnit": 1, "purity": 1.5}) == 3.0
    assert compute_fine_weight({"quantity": -2, "ozPerUnit": 1}) == -2.0


def test_fine_weight_differs_from_nominal_weight(dimes):
    assert dimes.total_oz == pytest.approx(1.428)
    assert compute_fine_weight(dimes) < dimes.total_oz


# --- aggregate ---


def test_aggregate_empty_is_all_zero():
    assert aggregate([], 31.5) == PortfolioMetrics()
    assert aggregate([], 0) == PortfolioMetrics()


def test_aggregate_portfolio_scenario():
    holdings = [
        Holding(name="Bars", quantity=10, oz_per_unit=1, purchase_price=500),
        Holding(name="Rounds", quantity=5, oz_per_unit=1, purchase_price=300),
    ]

    metrics = aggregate(holdings, 30)

    assert metrics.total_cost_basis == 800
    assert metrics.total_ounces == 15
    assert metrics.current_value == 450
    assert metrics.unrealized_gain_loss == -350
    assert metrics.portfolio_dca == pytest.approx(53.3333, rel=1e-4)
    assert metrics.percentage_return == pytest.approx(-43.75)


def test_aggregate_without_cost_basis_reports_zero_dca_and_return():
    holdings = [Holding(name="Gifted Eagle", quantity=3, oz_per_unit=1)]

    metrics = aggregate(holdings, 30)

    assert metrics.total_cost_basis == 0
    assert metrics.current_value == 90
    assert metrics.unrealized_gain_loss == 90
    assert metrics.portfolio_dca == 0
    assert metrics.percentage_return == 0


def test_aggregate_zero_weight_guards_dca():
    holdings = [Holding(name="Lost", quantity=0, oz_per_unit=1, purchase_price=100)]

    metrics = aggregate(holdings, 30)

    assert metrics.portfolio_dca == 0
    assert metrics.percentage_return == -100


def test_aggregate_is_permutation_invariant(eagles, dimes, gold_bar):
    expected = aggregate([eagles, dimes, gold_bar], 29.75)

    for ordering in itertools.permutations([eagles, dimes, gold_bar]):
        metrics = aggregate(list(ordering), 29.75)
        for field, value in expected.model_dump(by_alias=False).items():
            assert getattr(metrics, field) == pytest.approx(value)


def test_aggregate_accepts_raw_records():
    records = [
        {"quantity": "10", "weight": "1", "purity": 0.999, "purchasePrice": "250"},
        {"quantity": 1, "ozPerUnit": 10, "purchasePrice": "n/a"},
    ]

    metrics = aggregate(records, 25)

    assert metrics.total_cost_basis == 250
    assert metrics.total_ounces == pytest.approx(19.99)


def test_aggregate_does_not_mutate_input(eagles, dimes):
    holdings = [eagles, dimes]
    aggregate(holdings, 30)
    assert holdings == [eagles, dimes]


def test_aggregate_by_metal_uses_each_metals_spot(eagles, gold_bar):
    result = aggregate_by_metal([eagles, gold_bar], {MetalType.SILVER: 30, MetalType.GOLD: 2400})

    assert set(result) == {MetalType.SILVER, MetalType.GOLD}
    assert result[MetalType.SILVER].current_value == pytest.approx(9.99 * 30)
    assert result[MetalType.GOLD].current_value == pytest.approx(0.9999 * 2400)
    assert result[MetalType.GOLD].total_cost_basis == 2100


def test_aggregate_by_metal_missing_price_values_at_zero(gold_bar):
    result = aggregate_by_metal([gold_bar], {})
    assert result[MetalType.GOLD].current_value == 0


# --- stack totals ---


def test_stack_totals_use_nominal_weight(eagles, dimes, gold_bar):
    holdings = [eagles, dimes, gold_bar]

    assert total_nominal_weight(holdings) == pytest.approx(10 + 1.428 + 1)
    assert weights_by_metal(holdings) == pytest.approx({MetalType.SILVER: 11.428, MetalType.GOLD: 1.0})
    assert stack_value(holdings, {MetalType.SILVER: 30, MetalType.GOLD: 2000}) == pytest.approx(
        11.428 * 30 + 2000
    )


def test_stack_value_missing_price_counts_zero(gold_bar):
    assert stack_value([gold_bar], {MetalType.SILVER: 30}) == 0


def test_metals_in_stack(eagles, gold_bar, dimes):
    assert metals_in_stack([]) == [MetalType.SILVER]
    assert metals_in_stack([gold_bar, eagles, dimes]) == [MetalType.GOLD, MetalType.SILVER]


# --- distribution ---


def test_group_weight_by_category():
    holdings = [
        Holding(name="A", category="Coin", quantity=5, oz_per_unit=1),
        Holding(name="B", category="Bar", quantity=1, oz_per_unit=5),
    ]

    groups = group_weight_by(holdings, "category")

    assert groups == {"Coin": 5, "Bar": 5}
    assert distribution_percentages(groups) == {"Coin": 50, "Bar": 50}


def test_group_weight_by_type_capitalizes_and_sorts(eagles, gold_bar):
    groups = group_weight_by([gold_bar, eagles], DistributionKey.TYPE)

    assert list(groups) == ["Silver", "Gold"]
    assert groups["Silver"] == 10


def test_group_weight_by_uses_nominal_weight(dimes):
    assert group_weight_by([dimes], "category") == pytest.approx({"Junk": 1.428})


def test_group_weight_by_merges_case_of_first_letter():
    holdings = [
        Holding(name="A", category="coin", quantity=1, oz_per_unit=1),
        Holding(name="B", category="Coin", quantity=2, oz_per_unit=1),
    ]
    assert group_weight_by(holdings, "category") == {"Coin": 3}


def test_group_weight_by_callable_key(eagles, dimes):
    groups = group_weight_by([eagles, dimes], key=lambda h: h.name.split()[0])
    assert set(groups) == {"American", "Roosevelt"}


def test_group_weight_by_unknown_key():
    with pytest.raises(ValueError):
        group_weight_by([], "color")


def test_distribution_empty():
    assert group_weight_by([]) == {}
    assert distribution([]) == []


def test_distribution_zero_total_is_nan():
    holdings = [Holding(name="Nothing", category="Coin", quantity=0, oz_per_unit=1)]

    slices = distribution(holdings)

    assert len(slices) == 1
    assert slices[0].ounces == 0
    assert math.isnan(slices[0].percent)


def test_distribution_slices(eagles, dimes):
    slices = distribution([dimes, eagles], "category")

    assert [s.name for s in slices] == ["Coin", "Junk"]
    assert sum(s.percent for s in slices) == pytest.approx(100)


# --- value_change ---


@pytest.mark.parametrize(
    "current, previous, expected",
    [
        (500, None, None),
        (500, 0, None),
        (0, 400, None),
        (500, 400, 100),
        (300, 400, -100),
    ],
)
def test_value_change(current, previous, expected):
    assert value_change(current, previous) == expected
