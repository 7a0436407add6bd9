"""Stack persistence and management for Stacker."""

import json
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from .models import DistributionKey, Holding, MetalType, SpotPriceQuote, StackDocument

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "stacker"
DEFAULT_USER = "guest"


def get_data_dir() -> Path:
    """Data directory: STACKER_DATA_DIR env var or the default."""
    env_dir = os.environ.get("STACKER_DATA_DIR")
    return Path(env_dir).expanduser() if env_dir else DEFAULT_DATA_DIR


class StackStoreError(Exception):
    """Error reading or writing a stack document."""


def parse_holdings(entries: list) -> list[Holding]:
    """Validate stack entries one at a time, skipping the ones that cannot be read."""
    holdings = []
    for index, entry in enumerate(entries):
        try:
            holdings.append(Holding.model_validate(entry))
        except ValidationError as e:
            logger.warning("Skipping unreadable stack entry %d: %s", index, e)
    return holdings


def parse_stack_document(data: Any) -> StackDocument:
    """Build a document from stored data, accepting the legacy bare-list format."""
    if isinstance(data, list):
        return StackDocument(stack=parse_holdings(data), last_value=0)
    if isinstance(data, dict) and "stack" in data:
        if isinstance(data["stack"], list):
            data = {**data, "stack": parse_holdings(data["stack"])}
        return StackDocument.model_validate(data)
    return StackDocument()


class StackStore(Protocol):
    def load(self) -> StackDocument: ...

    def save(self, document: StackDocument) -> None: ...


class LocalStackStore:
    """Keeps each user's stack document in its own JSON file."""

    def __init__(self, user: str = DEFAULT_USER, data_dir: Path | None = None):
        self.user = user
        data_dir = data_dir or get_data_dir()
        safe_name = re.sub(r"[^A-Za-z0-9@._-]", "_", user)
        self.path = data_dir / "stacks" / f"{safe_name}.json"
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> StackDocument:
        """Load the stack document; a missing file is an empty stack.

        A file that exists but cannot be read raises StackStoreError so the
        next save cannot overwrite it.
        """
        if not self.path.exists():
            return StackDocument()

        try:
            return parse_stack_document(json.loads(self.path.read_text()))
        except (OSError, ValueError) as e:
            raise StackStoreError(f"Could not read {self.path}: {e}") from e

    def save(self, document: StackDocument) -> None:
        """Write the stack document."""
        self.path.write_text(document.model_dump_json(indent=2))


class RemoteStackStore:
    """Reads and writes stack documents through the stack server's HTTP API."""

    def __init__(
        self,
        user: str,
        base_url: str,
        client: httpx.Client | None = None,
    ):
        self.user = user
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=30.0)

    def load(self) -> StackDocument:
        """Fetch the user's document.

        A new user gets the server's empty default. Any failed read raises
        StackStoreError so nothing is written over the stored stack.
        """
        url = f"{self.base_url}/api/stack/{self.user}"
        try:
            response = self._client.get(url)
        except httpx.HTTPError as e:
            raise StackStoreError(f"Failed to load stack from server: {e}") from e

        if response.status_code != 200:
            raise StackStoreError(
                f"Failed to load stack from server ({response.status_code}): {response.text}"
            )

        try:
            return parse_stack_document(response.json())
        except ValueError as e:
            raise StackStoreError(f"Unreadable stack from server: {e}") from e

    def save(self, document: StackDocument) -> None:
        """Replace the user's document on the server."""
        payload = {"email": self.user, "payload": document.model_dump(mode="json")}
        try:
            response = self._client.post(f"{self.base_url}/api/stack", json=payload)
        except httpx.HTTPError as e:
            raise StackStoreError(f"Failed to save stack to server: {e}") from e

        if response.status_code != 200:
            raise StackStoreError(
                f"Failed to save stack to server ({response.status_code}): {response.text}"
            )


class PortfolioManager:
    """Manages loading, saving, and modifying a user's stack."""

    def __init__(self, store: StackStore):
        self.store = store

    def load(self) -> StackDocument:
        return self.store.load()

    def save(self, document: StackDocument) -> None:
        self.store.save(document)

    def list_holdings(self) -> list[Holding]:
        """Get all holdings, newest first."""
        return self.load().stack

    def add_holding(self, holding: Holding) -> Holding:
        """Add a holding to the front of the stack."""
        document = self.load()
        document.stack.insert(0, holding)
        self.save(document)
        logger.info("Added %s (%s)", holding.name, holding.id)
        return holding

    def remove_holding(self, holding_id: str) -> Holding | None:
        """Remove a holding by id. Returns the removed holding or None."""
        document = self.load()

        for index, holding in enumerate(document.stack):
            if holding.id == holding_id:
                removed = document.stack.pop(index)
                self.save(document)
                logger.info("Removed %s (%s)", removed.name, removed.id)
                return removed

        return None

    def get_holding(self, holding_id: str) -> Holding | None:
        """Get a holding by id."""
        for holding in self.list_holdings():
            if holding.id == holding_id:
                return holding
        return None

    def previous_value(self) -> float:
        """Portfolio value recorded at the end of the last session."""
        return self.load().last_value

    def record_value(self, value: float) -> None:
        """Persist the current portfolio value for the next session's comparison."""
        document = self.load()
        document.last_value = value
        document.last_updated = datetime.now(timezone.utc)
        self.save(document)


def export_filename(user: str) -> str:
    """Default download name for a user's export."""
    return f"stacker_pro_portfolio_{user}.json"


def build_export(
    user: str | None,
    holdings: list[Holding],
    quotes: dict[MetalType, SpotPriceQuote | None],
) -> dict:
    """Flat JSON-ready snapshot of a stack and the quotes it was valued with."""
    return {
        "user": user or DEFAULT_USER,
        "exportedAt": datetime.now(timezone.utc).isoformat(),
        "stack": [holding.model_dump(mode="json") for holding in holdings],
        "currentSpotPrices": {
            metal.value: quote.model_dump(mode="json") if quote else None
            for metal, quote in quotes.items()
        },
    }


class SettingsManager:
    """Small JSON key/value file for dashboard preferences."""

    def __init__(self, settings_path: Path | None = None):
        self.settings_path = settings_path or get_data_dir() / "settings.json"
        self.settings_path.parent.mkdir(parents=True, exist_ok=True)

    def _read(self) -> dict:
        try:
            data = json.loads(self.settings_path.read_text())
        except (FileNotFoundError, json.JSONDecodeError):
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        settings = self._read()
        settings[key] = value
        self.settings_path.write_text(json.dumps(settings, indent=2))

    def get_last_selected_metal(self) -> MetalType:
        """Metal shown in the performance panel; silver unless saved otherwise."""
        try:
            return MetalType(self.get("last_selected_metal", MetalType.SILVER.value))
        except ValueError:
            return MetalType.SILVER

    def set_last_selected_metal(self, metal: MetalType) -> None:
        self.set("last_selected_metal", metal.value)

    def get_chart_distribution(self) -> DistributionKey:
        """Distribution grouping; category unless saved otherwise."""
        try:
            return DistributionKey(self.get("chart_distribution", DistributionKey.CATEGORY.value))
        except ValueError:
            return DistributionKey.CATEGORY

    def set_chart_distribution(self, key: DistributionKey) -> None:
        self.set("chart_distribution", key.value)
