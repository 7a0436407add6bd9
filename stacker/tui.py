"""Interactive TUI mode for Stacker."""

import json
import logging
import queue
import sys
import termios
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path

import readchar
from rich.console import Group
from rich.live import Live
from rich.text import Text

from .api import GeminiAPIError, GeminiClient
from .calculations import aggregate_by_metal, metals_in_stack, stack_value
from .charts import build_distribution_chart
from .display import (
    build_holdings_table,
    build_performance_panel,
    build_sources_panel,
    build_spot_bar,
    build_stack_summary,
    console,
)
from .models import DistributionKey, Holding, MetalType, PortfolioMetrics, SpotPriceQuote
from .portfolio import (
    PortfolioManager,
    SettingsManager,
    StackStoreError,
    build_export,
    export_filename,
)

logger = logging.getLogger(__name__)

LOGO = r"""
╔═╗╔╦╗╔═╗╔═╗╦╔═╔═╗╦═╗
╚═╗ ║ ╠═╣║  ╠╩╗║╣ ╠╦╝
╚═╝ ╩ ╩ ╩╚═╝╩ ╩╚═╝╩╚═
"""

LOGO_STYLES = ["bold bright_white", "bold white", "grey70"]

METAL_KEYS = {
    "1": MetalType.SILVER,
    "s": MetalType.SILVER,
    "2": MetalType.GOLD,
    "g": MetalType.GOLD,
}

KEY_HELP = [
    ("1-2/s/g", "metal"),
    ("t", "category/type"),
    ("e", "export"),
    ("r", "refresh"),
    ("q", "quit"),
]

QUIT_KEYS = {"q", readchar.key.CTRL_C}


@contextmanager
def restored_terminal():
    """Put the terminal back the way it was, whatever the dashboard did to it."""
    try:
        saved = termios.tcgetattr(sys.stdin)
    except termios.error:
        saved = None
    try:
        yield
    finally:
        if saved:
            try:
                termios.tcsetattr(sys.stdin, termios.TCSADRAIN, saved)
            except termios.error:
                pass


class InteractiveTUI:
    """Interactive terminal dashboard for a user's stack."""

    def __init__(
        self,
        api: GeminiClient,
        portfolio: PortfolioManager,
        settings: SettingsManager,
        user: str,
    ):
        self.api = api
        self.portfolio = portfolio
        self.settings = settings
        self.user = user

        self.selected_metal = settings.get_last_selected_metal()
        self.distribution_key = settings.get_chart_distribution()
        self.holdings: list[Holding] = []
        self.previous_value: float | None = None
        self.quotes: dict[MetalType, SpotPriceQuote] = {}

        self.refreshed_at: datetime | None = None
        self.load_error: str | None = None
        self.error_message: str | None = None
        self.status_message: str | None = None

        self.running = False
        self._keys: queue.Queue[str] = queue.Queue()
        self._dirty = threading.Event()

    @property
    def prices(self) -> dict[MetalType, float]:
        return {metal: quote.price for metal, quote in self.quotes.items()}

    @property
    def total_value(self) -> float:
        return stack_value(self.holdings, self.prices)

    def current_metrics(self) -> PortfolioMetrics:
        return aggregate_by_metal(self.holdings, self.prices).get(
            self.selected_metal, PortfolioMetrics()
        )

    def load_stack(self) -> None:
        """Load holdings and the last session's value from the store."""
        try:
            document = self.portfolio.load()
        except StackStoreError as e:
            logger.warning("Could not load stack: %s", e)
            self.load_error = str(e)
        else:
            self.load_error = None
            self.holdings = document.stack
            self.previous_value = document.last_value
        self._dirty.set()

    def fetch_prices(self) -> None:
        """Fetch quotes for every metal in the stack, keeping the last good ones on failure."""
        try:
            fresh = {metal: self.api.fetch_spot_price(metal) for metal in metals_in_stack(self.holdings)}
        except GeminiAPIError as e:
            self.error_message = str(e)
        else:
            self.quotes = {**self.quotes, **fresh}
            self.refreshed_at = datetime.now()
            self.error_message = None
        self._dirty.set()

    def export(self) -> None:
        """Write the stack and current quotes to the default export file."""
        path = Path(export_filename(self.user))
        data = build_export(self.user, self.holdings, dict(self.quotes))
        path.write_text(json.dumps(data, indent=2))
        self.status_message = f"Exported {len(self.holdings)} items to {path}"

    def toggle_distribution(self) -> None:
        if self.distribution_key == DistributionKey.CATEGORY:
            self.distribution_key = DistributionKey.TYPE
        else:
            self.distribution_key = DistributionKey.CATEGORY

    def build_header(self) -> Text:
        """Logo plus the key help line."""
        header = Text(justify="center")
        for i, line in enumerate(LOGO.strip("\n").splitlines()):
            header.append(line + "\n", style=LOGO_STYLES[min(i, len(LOGO_STYLES) - 1)])
        for keys, action in KEY_HELP:
            header.append(f"  {keys}", style="grey70")
            header.append(f" {action}", style="dim")
        header.append("\n")
        return header

    def build_status_bar(self) -> Text:
        status = Text()
        if self.load_error or self.error_message:
            status.append(f"Error: {self.load_error or self.error_message}", style="red")
        elif self.refreshed_at:
            next_at = self.refreshed_at + timedelta(seconds=self.api.cache_ttl)
            status.append(
                f"Prices from {self.refreshed_at:%H:%M:%S}, next refresh {next_at:%H:%M:%S}",
                style="dim",
            )
        if self.status_message:
            status.append(f"  {self.status_message}", style="green")
        return status

    def build_display(self) -> Group:
        parts = [
            self.build_header(),
            build_spot_bar(self.quotes, self.selected_metal),
            build_stack_summary(self.holdings, self.total_value, self.previous_value),
        ]

        if self.holdings:
            parts.append(build_performance_panel(self.current_metrics(), self.selected_metal))
            parts.append(build_distribution_chart(self.holdings, self.distribution_key))
            parts.append(build_holdings_table(self.holdings, self.prices))
        else:
            parts.append(Text("Your stack is empty. Use 'stacker add' to add items.", style="dim"))

        sources = build_sources_panel(self.quotes)
        if sources:
            parts.append(sources)

        parts.append(self.build_status_bar())
        return Group(*parts)

    def handle_key(self, key: str) -> bool:
        """Apply one key press. Returns False when the dashboard should close."""
        key = key.lower()
        if key in QUIT_KEYS:
            return False

        if key in METAL_KEYS:
            self.selected_metal = METAL_KEYS[key]
        elif key == "t":
            self.toggle_distribution()
        elif key == "r":
            self.fetch_prices()
        elif key == "e" and self.holdings:
            try:
                self.export()
            except OSError as e:
                self.error_message = f"Export failed: {e}"
        else:
            return True

        self._dirty.set()
        return True

    def _read_keys(self) -> None:
        while self.running:
            try:
                self._keys.put(readchar.readkey())
            except (OSError, termios.error):
                # No usable terminal; close the dashboard.
                self._keys.put("q")
                return

    def _refresh_periodically(self) -> None:
        while self.running:
            deadline = time.monotonic() + self.api.cache_ttl
            while self.running and time.monotonic() < deadline:
                time.sleep(0.5)
            if self.running:
                self.fetch_prices()

    def save_session(self) -> None:
        """Persist settings and this session's value for the next comparison."""
        self.settings.set_last_selected_metal(self.selected_metal)
        self.settings.set_chart_distribution(self.distribution_key)
        if self.holdings and self.quotes:
            try:
                self.portfolio.record_value(self.total_value)
            except StackStoreError as e:
                logger.warning("Could not record portfolio value: %s", e)

    def run(self) -> None:
        """Run the dashboard until the user quits."""
        self.load_stack()
        self.fetch_prices()
        self.running = True

        for worker in (self._read_keys, self._refresh_periodically):
            threading.Thread(target=worker, daemon=True).start()

        with restored_terminal():
            try:
                with Live(
                    self.build_display(),
                    console=console,
                    refresh_per_second=2,
                    screen=True,
                    vertical_overflow="crop",
                ) as live:
                    while True:
                        try:
                            if not self.handle_key(self._keys.get(timeout=0.1)):
                                break
                        except queue.Empty:
                            pass
                        if self._dirty.is_set():
                            self._dirty.clear()
                            live.update(self.build_display())
            except KeyboardInterrupt:
                pass
            finally:
                self.running = False

        self.save_session()


def run_interactive(api: GeminiClient, portfolio: PortfolioManager, user: str) -> None:
    """Open the dashboard for a user's stack."""
    tui = InteractiveTUI(api, portfolio, SettingsManager(), user)
    tui.run()
