"""CLI interface for Stacker."""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.logging import RichHandler
from rich.prompt import Confirm, FloatPrompt, IntPrompt, Prompt

from .api import GeminiAPIError, GeminiClient
from .calculations import aggregate_by_metal, metals_in_stack, stack_value
from .charts import show_distribution_chart
from .display import (
    console,
    display_error,
    display_holdings_table,
    display_performance,
    display_sources,
    display_spot_bar,
    display_stack_summary,
    display_success,
)
from .models import DistributionKey, Holding, MetalType, PortfolioMetrics
from .portfolio import (
    DEFAULT_USER,
    LocalStackStore,
    PortfolioManager,
    RemoteStackStore,
    StackStoreError,
    build_export,
    export_filename,
)
from .tui import run_interactive

logger = logging.getLogger(__name__)

CATEGORIES = ["Coin", "Bar", "Round", "Junk", "Other"]

app = typer.Typer(
    name="stacker",
    help="Track your silver and gold stack with AI-sourced spot prices.",
    invoke_without_command=True,
)


def configure_logging(verbose: bool) -> None:
    """Route log records through the shared rich console."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def get_api() -> GeminiClient:
    """Get API client, handling missing key gracefully."""
    try:
        return GeminiClient()
    except GeminiAPIError as e:
        display_error(str(e))
        raise typer.Exit(1)


def get_portfolio(ctx: typer.Context) -> PortfolioManager:
    """Portfolio for the user and store selected by the global options."""
    state = ctx.ensure_object(dict)
    user = state.get("user", DEFAULT_USER)
    server = state.get("server")
    if server:
        return PortfolioManager(RemoteStackStore(user, server))
    return PortfolioManager(LocalStackStore(user))


def load_holdings(portfolio: PortfolioManager) -> list[Holding]:
    """Holdings from the store, exiting when the stack cannot be read."""
    try:
        return portfolio.list_holdings()
    except StackStoreError as e:
        display_error(str(e))
        raise typer.Exit(1)


def performance_for(holdings: list[Holding], prices: dict[MetalType, float], metal: MetalType) -> PortfolioMetrics:
    """Performance metrics for one metal's holdings; all zero when it has none."""
    return aggregate_by_metal(holdings, prices).get(metal, PortfolioMetrics())


def match_holding(holdings: list[Holding], holding_id: str) -> Holding | None:
    """Find a holding by full id or unique id prefix."""
    matches = [h for h in holdings if h.id == holding_id]
    if not matches:
        matches = [h for h in holdings if h.id.startswith(holding_id)]
    if len(matches) > 1:
        display_error(f"Ambiguous id '{holding_id}', matches {len(matches)} items.")
        raise typer.Exit(1)
    return matches[0] if matches else None


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    user: Annotated[
        str,
        typer.Option("--user", "-u", envvar="STACKER_USER", help="User whose stack to use"),
    ] = DEFAULT_USER,
    server: Annotated[
        Optional[str],
        typer.Option("--server", envvar="STACKER_SERVER_URL", help="Stack server base URL"),
    ] = None,
    metal: Annotated[
        Optional[MetalType],
        typer.Option("--metal", "-m", help="Metal for performance metrics"),
    ] = None,
    distribution: Annotated[
        DistributionKey,
        typer.Option("--distribution", "-d", help="Group the weight chart by category or type"),
    ] = DistributionKey.CATEGORY,
    once: Annotated[
        bool,
        typer.Option("--once", "-1", help="Run once and exit (non-interactive)"),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Display spot prices, your stack and its performance."""
    configure_logging(verbose)
    ctx.ensure_object(dict).update(user=user, server=server)

    if ctx.invoked_subcommand is not None:
        return

    api = get_api()
    portfolio = get_portfolio(ctx)

    # Interactive mode (default)
    if not once:
        run_interactive(api, portfolio, user)
        return

    try:
        document = portfolio.load()
        holdings = document.stack

        with console.status("Fetching prices..."):
            quotes = api.fetch_spot_prices(metals_in_stack(holdings))
        prices = {m: q.price for m, q in quotes.items()}
        total_value = stack_value(holdings, prices)

        display_spot_bar(quotes)
        display_stack_summary(holdings, total_value, document.last_value)

        if holdings:
            selected = metal or holdings[0].metal_type
            display_performance(performance_for(holdings, prices, selected), selected)
            show_distribution_chart(holdings, distribution)
            display_holdings_table(holdings, prices)
            portfolio.record_value(total_value)
        else:
            console.print("\n[dim]Your stack is empty. Use 'stacker add' to add items.[/dim]")

        display_sources(quotes)

    except (GeminiAPIError, StackStoreError) as e:
        display_error(str(e))
        raise typer.Exit(1)


@app.command()
def add(
    ctx: typer.Context,
    description: Annotated[
        list[str],
        typer.Argument(help="What you bought, e.g. '10 American Silver Eagles'"),
    ],
    metal: Annotated[
        MetalType,
        typer.Option("--metal", "-m", help="Metal type"),
    ] = MetalType.SILVER,
    price: Annotated[
        Optional[float],
        typer.Option("--price", "-p", help="Total amount paid for this entry"),
    ] = None,
    date: Annotated[
        Optional[datetime],
        typer.Option("--date", formats=["%Y-%m-%d"], help="Purchase date"),
    ] = None,
) -> None:
    """Add an item to your stack from a plain-language description."""
    api = get_api()
    portfolio = get_portfolio(ctx)
    text = " ".join(description)

    try:
        with console.status("Parsing item..."):
            parsed = api.parse_item(text)
        holding = portfolio.add_holding(
            parsed.to_holding(metal_type=metal, purchase_price=price, purchase_date=date)
        )
    except GeminiAPIError as e:
        display_error(str(e))
        console.print("[dim]Try something like '10 American Silver Eagles' or '1kg Silver Bar'.[/dim]")
        raise typer.Exit(1)
    except StackStoreError as e:
        display_error(str(e))
        raise typer.Exit(1)

    display_success(
        f"Added: {holding.quantity:g}x {holding.name} "
        f"({holding.oz_per_unit:g} oz, {holding.purity * 100:.1f}% {holding.metal_type.value})"
    )


@app.command(name="add-manual")
def add_manual(ctx: typer.Context) -> None:
    """Add an item to your stack interactively, without AI parsing."""
    portfolio = get_portfolio(ctx)

    console.print("\n[bold]Add Item to Stack[/bold]\n")

    name = Prompt.ask("Item name", default="American Silver Eagle")
    metal = MetalType(Prompt.ask("Metal type", choices=[m.value for m in MetalType], default="silver"))
    category = Prompt.ask("Category", choices=CATEGORIES, default="Coin")
    quantity = FloatPrompt.ask("Quantity", default=1.0)
    oz_per_unit = FloatPrompt.ask("Weight per unit (troy oz)", default=1.0)
    purity = FloatPrompt.ask("Purity (e.g. 0.999 or 0.90)", default=0.999)
    price_str = Prompt.ask("Total price paid (optional, press Enter to skip)", default="")
    date_str = Prompt.ask("Purchase date YYYY-MM-DD (optional)", default="")

    try:
        purchase_date = datetime.strptime(date_str, "%Y-%m-%d") if date_str else None
    except ValueError:
        display_error(f"Invalid date '{date_str}', expected YYYY-MM-DD.")
        raise typer.Exit(1)

    holding = Holding(
        name=name,
        metal_type=metal,
        category=category,
        quantity=quantity,
        oz_per_unit=oz_per_unit,
        purity=purity,
        purchase_price=price_str or None,
        purchase_date=purchase_date,
    )

    try:
        portfolio.add_holding(holding)
    except StackStoreError as e:
        display_error(str(e))
        raise typer.Exit(1)

    display_success(f"\nAdded: {holding.quantity:g}x {holding.name} ({holding.total_oz:g} oz {holding.metal_type.value})")


@app.command()
def remove(
    ctx: typer.Context,
    holding_id: Annotated[
        Optional[str],
        typer.Argument(help="Id (or id prefix) of the item to remove"),
    ] = None,
) -> None:
    """Remove an item from your stack."""
    portfolio = get_portfolio(ctx)
    holdings = load_holdings(portfolio)

    if not holdings:
        display_error("Your stack is empty.")
        raise typer.Exit(1)

    # If no id provided, show list and ask
    if holding_id is None:
        console.print("\n[bold]Remove Item from Stack[/bold]\n")

        for i, holding in enumerate(holdings, 1):
            console.print(f"  {i}. {holding.name} ({holding.total_oz:g} oz {holding.metal_type.value})")

        console.print()
        index = IntPrompt.ask("Enter item number to remove") - 1

        if index < 0 or index >= len(holdings):
            display_error(f"Invalid item number. Choose 1-{len(holdings)}.")
            raise typer.Exit(1)
        holding = holdings[index]
    else:
        holding = match_holding(holdings, holding_id)
        if holding is None:
            display_error(f"No item with id '{holding_id}'.")
            raise typer.Exit(1)

    if Confirm.ask(f"Remove {holding.name}?"):
        try:
            portfolio.remove_holding(holding.id)
        except StackStoreError as e:
            display_error(str(e))
            raise typer.Exit(1)
        display_success(f"Removed: {holding.name}")
    else:
        console.print("Cancelled.")


@app.command(name="list")
def list_holdings(ctx: typer.Context) -> None:
    """List all items in your stack."""
    api = get_api()
    portfolio = get_portfolio(ctx)

    holdings = load_holdings(portfolio)

    if not holdings:
        console.print("[dim]Your stack is empty. Use 'stacker add' to add items.[/dim]")
        return

    try:
        with console.status("Fetching prices..."):
            quotes = api.fetch_spot_prices(metals_in_stack(holdings))

        display_holdings_table(holdings, {m: q.price for m, q in quotes.items()})

    except GeminiAPIError:
        # Show list without prices if API fails
        display_holdings_table(holdings, {})


@app.command()
def performance(
    ctx: typer.Context,
    metal: Annotated[
        MetalType,
        typer.Option("--metal", "-m", help="Metal to evaluate"),
    ] = MetalType.SILVER,
) -> None:
    """Show cost basis, DCA and unrealized gain/loss for one metal."""
    api = get_api()
    portfolio = get_portfolio(ctx)
    holdings = load_holdings(portfolio)

    try:
        with console.status(f"Fetching {metal.value} price..."):
            quote = api.fetch_spot_price(metal)
    except GeminiAPIError as e:
        display_error(str(e))
        raise typer.Exit(1)

    display_performance(performance_for(holdings, {metal: quote.price}, metal), metal)


@app.command()
def export(
    ctx: typer.Context,
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="File to write (default: stacker_pro_portfolio_<user>.json)"),
    ] = None,
) -> None:
    """Export your stack and current spot prices to JSON."""
    portfolio = get_portfolio(ctx)
    user = ctx.ensure_object(dict).get("user", DEFAULT_USER)
    holdings = load_holdings(portfolio)

    if not holdings:
        display_error("Your stack is empty, nothing to export.")
        raise typer.Exit(1)

    quotes = {metal: None for metal in metals_in_stack(holdings)}
    if os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY"):
        try:
            with console.status("Fetching prices..."):
                quotes.update(get_api().fetch_spot_prices(list(quotes)))
        except GeminiAPIError as e:
            logger.warning("Exporting without spot prices: %s", e)

    output = output or Path(export_filename(user))
    output.write_text(json.dumps(build_export(user, holdings, quotes), indent=2))
    display_success(f"Exported {len(holdings)} items to {output}")


if __name__ == "__main__":
    app()
