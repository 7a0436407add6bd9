"""Weight distribution charting for Stacker."""

from rich.bar import Bar
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .calculations import distribution
from .display import console, format_percent, format_weight
from .models import DistributionKey, Holding

BAR_COLORS = ["grey70", "grey58", "grey46", "grey35", "grey27", "grey19", "yellow3", "dark_goldenrod", "gold3"]


def build_distribution_chart(holdings: list[Holding], key: DistributionKey) -> Panel:
    """Horizontal bar chart of nominal weight by category or metal type."""
    slices = distribution(holdings, key)
    subtitle = f"[dim]by {key.value}[/dim]"

    if not slices:
        return Panel(
            Text("Nothing to chart yet.", style="dim"),
            title="Distribution by Weight",
            subtitle=subtitle,
            border_style="magenta",
        )

    largest = max(s.ounces for s in slices) or 1.0

    table = Table(show_header=False, box=None, expand=True)
    table.add_column("Group", no_wrap=True)
    table.add_column("Bar", ratio=1)
    table.add_column("Weight", justify="right", no_wrap=True)
    table.add_column("Share", justify="right", no_wrap=True)

    for i, item in enumerate(slices):
        table.add_row(
            item.name,
            Bar(size=largest, begin=0, end=max(item.ounces, 0), color=BAR_COLORS[i % len(BAR_COLORS)]),
            format_weight(item.ounces),
            format_percent(item.percent),
        )

    return Panel(table, title="Distribution by Weight", subtitle=subtitle, border_style="magenta")


def show_distribution_chart(holdings: list[Holding], key: DistributionKey) -> None:
    """Display the distribution chart for a stack."""
    console.print(build_distribution_chart(holdings, key))
