"""Rich-based terminal display for Stacker."""

import math

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .calculations import total_nominal_weight, value_change, weights_by_metal
from .models import Holding, MetalType, PortfolioMetrics, SpotPriceQuote

console = Console()

GRAMS_PER_TROY_OZ = 31.1034768

METAL_STYLES = {
    MetalType.SILVER: "bold bright_white",
    MetalType.GOLD: "bold yellow",
}


def format_price(value: float, precision: int = 2) -> str:
    """Format a price value with commas and fixed precision."""
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.{precision}f}"


def format_weight(value: float) -> str:
    """Format a weight in troy ounces."""
    return f"{value:,.2f} oz"


def format_percent(value: float) -> str:
    """Format a percentage; NaN (no total to divide by) shows as a dash."""
    if math.isnan(value):
        return "-"
    return f"{value:.1f}%"


def format_change(change: float, change_pct: float | None = None) -> Text:
    """Format a value change with color coding."""
    if change >= 0:
        style = "green"
        sign = "+"
    else:
        style = "red"
        sign = ""

    text = Text()
    text.append(f"{sign}{format_price(change)}", style=style)
    if change_pct is not None:
        arrow = "▲" if change >= 0 else "▼"
        text.append(f" {arrow} {abs(change_pct):.2f}%", style=style)
    return text


def build_spot_bar(quotes: dict[MetalType, SpotPriceQuote], selected: MetalType | None = None) -> Panel:
    """Panel with one cell per metal's spot price."""
    table = Table(show_header=False, box=None, padding=(0, 1), expand=True)

    for _ in MetalType:
        table.add_column(justify="center", ratio=1)

    price_cells = []
    updated_cells = []

    for metal in MetalType:
        quote = quotes.get(metal)
        if quote:
            style = "bold reverse" if metal == selected else METAL_STYLES[metal]
            price_text = Text()
            price_text.append(f"{metal.value.title()} ", style=style)
            price_text.append(format_price(quote.price))
            price_cells.append(price_text)
            updated_cells.append(
                Text(f"as of {quote.last_updated.strftime('%Y-%m-%d %H:%M')}", style="dim")
            )
        else:
            price_cells.append(Text("-"))
            updated_cells.append(Text("-"))

    table.add_row(*price_cells)
    table.add_row(*updated_cells)
    return Panel(table, title="Spot Prices (Sourced via AI)", border_style="blue", expand=True)


def build_stack_summary(
    holdings: list[Holding],
    total_value: float,
    previous_value: float | None,
) -> Panel:
    """Panel with total weight, per-metal weight, value and session change."""
    table = Table(show_header=False, box=None)
    table.add_column("Label", style="dim")
    table.add_column("Value")

    total_weight = total_nominal_weight(holdings)
    by_metal = weights_by_metal(holdings)

    table.add_row("Total Weight", Text(format_weight(total_weight), style="bold"))
    if by_metal:
        breakdown = " | ".join(
            f"{metal.value.title()}: {format_weight(weight)}" for metal, weight in by_metal.items()
        )
        table.add_row("", breakdown)
    else:
        table.add_row("", f"{total_weight * GRAMS_PER_TROY_OZ / 1000:,.2f} kg")

    table.add_row("Portfolio Value", Text(format_price(total_value), style="bold"))

    change = value_change(total_value, previous_value)
    if change is None:
        table.add_row("", Text("Based on spot prices", style="dim"))
    else:
        table.add_row("Since last session", format_change(change))

    return Panel(table, title="Your Stack", border_style="green")


def build_performance_panel(metrics: PortfolioMetrics, metal: MetalType) -> Panel:
    """Panel with cost basis, value, DCA and unrealized P&L."""
    table = Table(show_header=False, box=None)
    table.add_column("Label", style="dim")
    table.add_column("Value")

    table.add_row("Total Invested", format_price(metrics.total_cost_basis))
    table.add_row("Current Value", Text(format_price(metrics.current_value), style="bold cyan"))
    table.add_row(
        "Portfolio DCA / oz",
        Text.assemble(
            format_price(metrics.portfolio_dca),
            (f"  based on {format_weight(metrics.total_ounces)} fine", "dim"),
        ),
    )
    table.add_row("Unrealized P&L", format_change(metrics.unrealized_gain_loss, metrics.percentage_return))

    return Panel(table, title=f"{metal.value.title()} Performance", border_style="cyan")


def build_holdings_table(
    holdings: list[Holding],
    prices: dict[MetalType, float],
) -> Table:
    """Table of holdings, newest first."""
    table = Table(title="Holdings")
    table.add_column("#", style="dim", width=3)
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Metal")
    table.add_column("Purity", justify="right")
    table.add_column("Qty", justify="right")
    table.add_column("Unit Oz", justify="right")
    table.add_column("Total Oz", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Value", justify="right")
    table.add_column("ID", style="dim")

    for i, holding in enumerate(holdings):
        spot = prices.get(holding.metal_type, 0)
        table.add_row(
            str(i + 1),
            holding.name,
            holding.category,
            holding.metal_type.value.title(),
            f"{holding.purity * 100:.1f}%",
            f"{holding.quantity:g}",
            f"{holding.oz_per_unit:g}",
            f"{holding.total_oz:,.2f}",
            format_price(holding.purchase_price) if holding.purchase_price is not None else "-",
            format_price(holding.total_oz * spot),
            holding.id[:8],
        )

    return table


def build_sources_panel(quotes: dict[MetalType, SpotPriceQuote]) -> Panel | None:
    """Panel listing the search results each quote was sourced from."""
    lines = []
    for metal, quote in quotes.items():
        if quote and quote.sources:
            lines.append(Text(f"{metal.value.title()} Sources", style="bold"))
            for source in quote.sources:
                line = Text("  • ")
                line.append(source.title, style=f"link {source.uri}")
                lines.append(line)

    if not lines:
        return None
    return Panel(Group(*lines), title="Market Sources", border_style="dim")


def display_spot_bar(quotes: dict[MetalType, SpotPriceQuote]) -> None:
    console.print(build_spot_bar(quotes))


def display_stack_summary(holdings: list[Holding], total_value: float, previous_value: float | None) -> None:
    console.print(build_stack_summary(holdings, total_value, previous_value))


def display_performance(metrics: PortfolioMetrics, metal: MetalType) -> None:
    console.print(build_performance_panel(metrics, metal))


def display_holdings_table(holdings: list[Holding], prices: dict[MetalType, float]) -> None:
    """Display table of holdings."""
    if not holdings:
        console.print("[dim]Your stack is empty. Use 'stacker add' to add items.[/dim]")
        return
    console.print(build_holdings_table(holdings, prices))


def display_sources(quotes: dict[MetalType, SpotPriceQuote]) -> None:
    panel = build_sources_panel(quotes)
    if panel:
        console.print(panel)


def display_error(message: str) -> None:
    """Display error message."""
    console.print(f"[red]Error:[/red] {message}")


def display_success(message: str) -> None:
    """Display success message."""
    console.print(f"[green]{message}[/green]")
