"""Gemini API client for item parsing and AI-sourced spot prices."""

import json
import logging
import os
from datetime import datetime, timedelta
from pathlib import Path

import httpx
from pydantic import ValidationError

from .models import MetalType, ParsedItem, PriceSource, SpotPriceQuote

logger = logging.getLogger(__name__)

BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-2.5-flash"
CACHE_DIR = Path.home() / ".cache" / "stacker"
DEFAULT_CACHE_TTL_SECONDS = 3600  # Default: 1 hour

PARSE_PROMPT = """Parse the following silver item description and extract details: "{text}".
Standardize the name (e.g., "ASE" to "American Silver Eagle").
Assume 1 oz if not specified.
Common silver items:
- Coins (ASE, Maple, Britannia, Krugerrand) are usually 1oz 0.999.
- Constitutional silver (junk) like Roosevelt dimes or Washington quarters have specific weights.
- Bars/Rounds are usually labeled (1oz, 5oz, 10oz, 1kg).
Return weight in TROY OUNCES."""

PARSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "name": {"type": "STRING", "description": "Normalized product name"},
        "ozPerUnit": {"type": "NUMBER", "description": "Troy ounces per single unit"},
        "quantity": {"type": "NUMBER", "description": "Number of units specified"},
        "purity": {"type": "NUMBER", "description": "Silver purity (e.g. 0.999 or 0.90)"},
        "category": {"type": "STRING", "description": "Type: Coin, Bar, Round, Junk, Other"},
    },
    "required": ["name", "ozPerUnit", "quantity", "purity", "category"],
}

SPOT_PROMPT = "What is the current {metal} spot price per troy ounce in USD right now?"

EXTRACT_PROMPT = (
    'Extract ONLY the current {metal} spot price as a number from this text: "{text}". '
    "If multiple are mentioned, pick the most recent/accurate one."
)

EXTRACT_SCHEMA = {
    "type": "OBJECT",
    "properties": {"price": {"type": "NUMBER"}},
    "required": ["price"],
}


class GeminiAPIError(Exception):
    """Error from the Gemini API or from an unusable model response."""


class GeminiClient:
    """Client for the Gemini generateContent API."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        cache_ttl: int | None = None,
        cache_dir: Path | None = None,
        client: httpx.Client | None = None,
    ):
        self.api_key = api_key or os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY", "")
        if not self.api_key:
            raise GeminiAPIError(
                "API key required. Set GEMINI_API_KEY environment variable "
                "or pass api_key to constructor. Get a key at https://aistudio.google.com"
            )

        self.model = model or os.environ.get("GEMINI_MODEL") or DEFAULT_MODEL

        # Cache TTL: constructor arg > env var > default (1 hour)
        if cache_ttl is not None:
            self.cache_ttl = cache_ttl
        else:
            env_ttl = os.environ.get("STACKER_CACHE_TTL")
            self.cache_ttl = int(env_ttl) if env_ttl else DEFAULT_CACHE_TTL_SECONDS

        self.cache_dir = cache_dir or CACHE_DIR
        self._client = client or httpx.Client(timeout=60.0)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def _get_cache_path(self, metal: MetalType) -> Path:
        """Cache file for a metal's spot quote."""
        return self.cache_dir / f"spot_{metal.value}.json"

    def _get_cached(self, cache_path: Path) -> SpotPriceQuote | None:
        """Get cached quote if still fresh."""
        if not cache_path.exists():
            return None
        try:
            data = json.loads(cache_path.read_text())
            cached_at = datetime.fromisoformat(data.pop("_cached_at", ""))
            if datetime.now() - cached_at < timedelta(seconds=self.cache_ttl):
                return SpotPriceQuote.model_validate(data)
        except (json.JSONDecodeError, TypeError, ValueError):
            pass
        return None

    def _save_cache(self, cache_path: Path, quote: SpotPriceQuote) -> None:
        """Save quote to cache."""
        data = quote.model_dump(mode="json")
        data["_cached_at"] = datetime.now().isoformat()
        cache_path.write_text(json.dumps(data))

    def _generate(
        self,
        prompt: str,
        response_schema: dict | None = None,
        search: bool = False,
    ) -> dict:
        """Call generateContent and return the raw response body."""
        body: dict = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        if response_schema is not None:
            body["generationConfig"] = {
                "responseMimeType": "application/json",
                "responseSchema": response_schema,
            }
        if search:
            body["tools"] = [{"google_search": {}}]

        url = f"{BASE_URL}/models/{self.model}:generateContent"
        logger.debug("POST %s (search=%s)", url, search)
        try:
            response = self._client.post(
                url,
                json=body,
                headers={"x-goog-api-key": self.api_key},
            )
        except httpx.HTTPError as e:
            raise GeminiAPIError(f"Request failed: {e}") from e

        if response.status_code != 200:
            raise GeminiAPIError(f"API error {response.status_code}: {response.text}")

        return response.json()

    @staticmethod
    def _response_text(data: dict) -> str:
        """Concatenate the text parts of the first candidate."""
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = candidates[0].get("content", {}).get("parts", [])
        return "".join(part.get("text", "") for part in parts)

    @staticmethod
    def _grounding_sources(data: dict) -> list[PriceSource]:
        """Extract web attributions from the first candidate's grounding metadata."""
        candidates = data.get("candidates") or []
        if not candidates:
            return []
        chunks = candidates[0].get("groundingMetadata", {}).get("groundingChunks", [])
        sources = []
        for chunk in chunks:
            web = chunk.get("web") or {}
            uri = web.get("uri") or ""
            if uri:
                sources.append(PriceSource(title=web.get("title") or "Search Source", uri=uri))
        return sources

    def parse_item(self, text: str) -> ParsedItem:
        """Turn a free-text description into structured item fields."""
        data = self._generate(PARSE_PROMPT.format(text=text), response_schema=PARSE_SCHEMA)
        try:
            return ParsedItem.model_validate_json(self._response_text(data).strip())
        except ValidationError as e:
            raise GeminiAPIError("Failed to parse AI response for silver item.") from e

    def fetch_spot_price(self, metal: MetalType) -> SpotPriceQuote:
        """Get the current spot price for a metal, with search attributions."""
        cache_path = self._get_cache_path(metal)
        cached = self._get_cached(cache_path)
        if cached:
            logger.debug("Using cached %s quote", metal.value)
            return cached

        search = self._generate(SPOT_PROMPT.format(metal=metal.value), search=True)
        sources = self._grounding_sources(search)

        extracted = self._generate(
            EXTRACT_PROMPT.format(metal=metal.value, text=self._response_text(search)),
            response_schema=EXTRACT_SCHEMA,
        )
        try:
            price = float(json.loads(self._response_text(extracted).strip())["price"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise GeminiAPIError(f"Failed to extract {metal.value} spot price.") from e

        quote = SpotPriceQuote(
            metal=metal,
            price=price,
            currency="USD",
            last_updated=datetime.now().astimezone(),
            sources=sources,
        )
        self._save_cache(cache_path, quote)
        logger.debug("Fetched %s spot price %.2f", metal.value, price)
        return quote

    def fetch_spot_prices(self, metals: list[MetalType] | None = None) -> dict[MetalType, SpotPriceQuote]:
        """Get spot quotes for several metals; silver when none are given."""
        metals = metals or [MetalType.SILVER]
        return {metal: self.fetch_spot_price(metal) for metal in metals}

    def close(self) -> None:
        self._client.close()
