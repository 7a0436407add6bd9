from rich.console import Console

from stacker.charts import build_distribution_chart
from stacker.display import (
    build_performance_panel,
    build_sources_panel,
    build_spot_bar,
    build_stack_summary,
    format_change,
    format_percent,
    format_price,
    format_weight,
)
from stacker.models import (
    DistributionKey,
    Holding,
    MetalType,
    PortfolioMetrics,
    PriceSource,
    SpotPriceQuote,
)


def render(renderable) -> str:
    console = Console(width=120, record=True)
    console.print(renderable)
    return console.export_text()


def test_format_price():
    assert format_price(1234.5) == "$1,234.50"
    assert format_price(-350) == "-$350.00"


def test_format_weight():
    assert format_weight(1.2852) == "1.29 oz"


def test_format_percent():
    assert format_percent(50) == "50.0%"
    assert format_percent(float("nan")) == "-"


def test_format_change():
    assert format_change(100).plain == "+$100.00"
    assert format_change(-350, -43.75).plain == "-$350.00 ▼ 43.75%"
    assert format_change(0, 0).plain == "+$0.00 ▲ 0.00%"


def test_stack_summary_shows_session_change(eagles):
    text = render(build_stack_summary([eagles], total_value=320, previous_value=300))

    assert "10.00 oz" in text
    assert "Since last session" in text
    assert "+$20.00" in text


def test_stack_summary_without_previous_value(eagles):
    text = render(build_stack_summary([eagles], total_value=320, previous_value=0))
    assert "Based on spot prices" in text


def test_stack_summary_empty_shows_kilograms():
    text = render(build_stack_summary([], total_value=0, previous_value=None))
    assert "0.00 kg" in text


def test_performance_panel():
    metrics = PortfolioMetrics(
        total_cost_basis=800,
        total_ounces=15,
        current_value=450,
        unrealized_gain_loss=-350,
        portfolio_dca=53.33,
        percentage_return=-43.75,
    )

    text = render(build_performance_panel(metrics, MetalType.SILVER))

    assert "Silver Performance" in text
    assert "$800.00" in text
    assert "-$350.00" in text
    assert "43.75%" in text


def test_spot_bar_marks_missing_metals():
    quotes = {MetalType.SILVER: SpotPriceQuote(metal=MetalType.SILVER, price=31.42)}
    text = render(build_spot_bar(quotes))

    assert "Silver $31.42" in text
    assert "-" in text


def test_sources_panel():
    quotes = {
        MetalType.SILVER: SpotPriceQuote(
            metal=MetalType.SILVER,
            price=31.42,
            sources=[PriceSource(title="Kitco", uri="https://www.kitco.com")],
        )
    }

    assert "Kitco" in render(build_sources_panel(quotes))
    assert build_sources_panel({MetalType.SILVER: SpotPriceQuote(price=30)}) is None


def test_distribution_chart():
    holdings = [
        Holding(name="A", category="Coin", quantity=5, oz_per_unit=1),
        Holding(name="B", category="Bar", quantity=1, oz_per_unit=5),
    ]

    text = render(build_distribution_chart(holdings, DistributionKey.CATEGORY))

    assert "Coin" in text
    assert "Bar" in text
    assert "50.0%" in text


def test_distribution_chart_zero_weight_shows_dash():
    holdings = [Holding(name="A", category="Coin", quantity=0, oz_per_unit=1)]

    text = render(build_distribution_chart(holdings, DistributionKey.CATEGORY))

    assert "Coin" in text
    assert "%" not in text


def test_distribution_chart_empty():
    assert "Nothing to chart yet" in render(build_distribution_chart([], DistributionKey.TYPE))
