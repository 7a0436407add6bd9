"""Valuation and aggregation for a precious metals stack.

Two weights are in play and they are deliberately not interchangeable:

* ``Holding.total_oz`` is the nominal weight (quantity x unit weight). The
  dashboard totals, the stack value and the distribution charts use it.
* The fine weight (ASW) additionally applies purity. Only the cost-basis
  performance metrics use it.

Every function here is pure: no I/O, no caching, and the input collection is
never modified.
"""

from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from .models import (
    DistributionKey,
    DistributionSlice,
    Holding,
    MetalType,
    PortfolioMetrics,
)
from .numbers import to_number_or_zero

_FIELD_NAMES = {
    "quantity": ("quantity",),
    "oz_per_unit": ("ozPerUnit", "oz_per_unit", "weight"),
    "purity": ("purity",),
    "purchase_price": ("purchasePrice", "purchase_price"),
}

_MISSING = object()


def _read(holding: Holding | Mapping[str, Any], field: str) -> Any:
    """Read a field from a Holding or from a raw stack record."""
    if isinstance(holding, Holding):
        return getattr(holding, field)
    for key in _FIELD_NAMES[field]:
        if key in holding:
            return holding[key]
    return _MISSING


def compute_fine_weight(holding: Holding | Mapping[str, Any]) -> float:
    """Fine metal weight of a holding in troy ounces.

    Missing or malformed quantity and unit weight count as 0. A missing
    purity counts as 1.0; a present one is used as given, without clamping.
    """
    quantity = to_number_or_zero(_read(holding, "quantity"))
    oz_per_unit = to_number_or_zero(_read(holding, "oz_per_unit"))
    purity = _read(holding, "purity")
    if purity is _MISSING or purity is None:
        purity = 1.0
    else:
        purity = to_number_or_zero(purity)
    return quantity * oz_per_unit * purity


def _cost_of(holding: Holding | Mapping[str, Any]) -> float:
    price = _read(holding, "purchase_price")
    return 0.0 if price is _MISSING else to_number_or_zero(price)


def aggregate(
    holdings: Iterable[Holding | Mapping[str, Any]],
    spot_price: float,
) -> PortfolioMetrics:
    """Fold holdings into cost-basis performance metrics at one spot price.

    Holdings without a purchase price contribute weight but no cost. With no
    cost basis the return is reported as 0, and with no weight the dollar-cost
    average is 0.
    """
    spot_price = to_number_or_zero(spot_price)
    total_cost_basis = 0.0
    total_ounces = 0.0

    for holding in holdings:
        total_cost_basis += _cost_of(holding)
        total_ounces += compute_fine_weight(holding)

    current_value = total_ounces * spot_price
    unrealized_gain_loss = current_value - total_cost_basis
    portfolio_dca = total_cost_basis / total_ounces if total_ounces > 0 else 0.0
    percentage_return = (
        (unrealized_gain_loss / total_cost_basis) * 100 if total_cost_basis > 0 else 0.0
    )

    return PortfolioMetrics(
        total_cost_basis=total_cost_basis,
        total_ounces=total_ounces,
        current_value=current_value,
        unrealized_gain_loss=unrealized_gain_loss,
        portfolio_dca=portfolio_dca,
        percentage_return=percentage_return,
    )


def aggregate_by_metal(
    holdings: Iterable[Holding],
    prices: Mapping[MetalType, float],
) -> dict[MetalType, PortfolioMetrics]:
    """Performance metrics per metal present in the stack, each at its own spot."""
    by_metal: dict[MetalType, list[Holding]] = defaultdict(list)
    for holding in holdings:
        by_metal[holding.metal_type].append(holding)

    return {
        metal: aggregate(items, prices.get(metal, 0))
        for metal, items in by_metal.items()
    }


def metals_in_stack(holdings: Iterable[Holding]) -> list[MetalType]:
    """Metals that need a spot quote, in first-seen order; silver for an empty stack."""
    metals = list(dict.fromkeys(holding.metal_type for holding in holdings))
    return metals or [MetalType.SILVER]


def total_nominal_weight(holdings: Iterable[Holding]) -> float:
    """Sum of nominal weight across the stack."""
    return sum(holding.total_oz for holding in holdings)


def weights_by_metal(holdings: Iterable[Holding]) -> dict[MetalType, float]:
    """Nominal weight per metal, heaviest first."""
    weights: dict[MetalType, float] = defaultdict(float)
    for holding in holdings:
        weights[holding.metal_type] += holding.total_oz
    return dict(sorted(weights.items(), key=lambda kv: kv[1], reverse=True))


def stack_value(holdings: Iterable[Holding], prices: Mapping[MetalType, float]) -> float:
    """Market value of the stack, pricing nominal weight at each metal's spot."""
    return sum(
        holding.total_oz * to_number_or_zero(prices.get(holding.metal_type, 0))
        for holding in holdings
    )


def _capitalize(value: str) -> str:
    return value[:1].upper() + value[1:]


def _key_function(
    key: DistributionKey | str | Callable[[Holding], str],
) -> Callable[[Holding], str]:
    if callable(key):
        return key
    match DistributionKey(key):
        case DistributionKey.CATEGORY:
            return lambda holding: _capitalize(holding.category)
        case DistributionKey.TYPE:
            return lambda holding: _capitalize(holding.metal_type.value)


def group_weight_by(
    holdings: Iterable[Holding],
    key: DistributionKey | str | Callable[[Holding], str] = DistributionKey.CATEGORY,
) -> dict[str, float]:
    """Sum nominal weight per group, heaviest group first.

    ``key`` is "category", "type" or a callable returning the group name.
    """
    key_fn = _key_function(key)
    groups: dict[str, float] = defaultdict(float)
    for holding in holdings:
        groups[key_fn(holding)] += holding.total_oz
    return dict(sorted(groups.items(), key=lambda kv: kv[1], reverse=True))


def distribution_percentages(groups: Mapping[str, float]) -> dict[str, float]:
    """Share of the grand total per group, as a percentage.

    A zero grand total yields NaN for every group; deciding how to show that
    is left to the caller.
    """
    total = sum(groups.values())
    if total == 0:
        return {name: float("nan") for name in groups}
    return {name: ounces / total * 100 for name, ounces in groups.items()}


def distribution(
    holdings: Iterable[Holding],
    key: DistributionKey | str | Callable[[Holding], str] = DistributionKey.CATEGORY,
) -> list[DistributionSlice]:
    """Grouped nominal weight with each group's percentage of the total."""
    groups = group_weight_by(holdings, key)
    percentages = distribution_percentages(groups)
    return [
        DistributionSlice(name=name, ounces=ounces, percent=percentages[name])
        for name, ounces in groups.items()
    ]


def value_change(current_value: float, previous_value: float | None) -> float | None:
    """Change in portfolio value since the previous session.

    None when there is no usable previous snapshot or nothing is valued now.
    """
    if previous_value is None or previous_value == 0 or current_value == 0:
        return None
    return current_value - previous_value
