"""Data models for Stacker."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
)
from pydantic.alias_generators import to_camel

from .numbers import to_number_or_zero


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MetalType(str, Enum):
    """Supported precious metals."""

    SILVER = "silver"
    GOLD = "gold"


class StackModel(BaseModel):
    """Base model that reads and writes the camelCase wire format."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        serialize_by_alias=True,
    )


class Holding(StackModel):
    """One entry in a user's stack.

    A single record type covers both the plain weight-tracking entries and
    the cost-basis-aware ones; purchase fields are simply optional.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str = Field(description="Normalized name, e.g. 'American Silver Eagle'")
    metal_type: MetalType = Field(
        default=MetalType.SILVER,
        validation_alias=AliasChoices("metalType", "metal_type", "type"),
    )
    category: str = Field(default="Other", description="Coin, Bar, Round, Junk, Other")
    quantity: float = Field(default=0.0, description="Number of units")
    oz_per_unit: float = Field(
        default=0.0,
        validation_alias=AliasChoices("ozPerUnit", "oz_per_unit", "weight"),
        description="Nominal troy ounces per unit, before purity",
    )
    purity: float = Field(default=1.0, description="Fine metal fraction, e.g. 0.999")
    purchase_price: float | None = Field(
        default=None, description="Total amount paid for this entry"
    )
    purchase_date: datetime | None = None
    added_at: datetime = Field(
        default_factory=_utcnow,
        validation_alias=AliasChoices("addedAt", "added_at", "createdAt"),
    )

    @field_validator("metal_type", mode="before")
    @classmethod
    def _default_metal(cls, value: Any) -> Any:
        # Older documents stored no type at all, or an empty one.
        return value or MetalType.SILVER

    @field_validator("category", mode="before")
    @classmethod
    def _default_category(cls, value: Any) -> Any:
        return value or "Other"

    @field_validator("quantity", "oz_per_unit", mode="before")
    @classmethod
    def _lenient_number(cls, value: Any) -> float:
        return to_number_or_zero(value)

    @field_validator("purity", mode="before")
    @classmethod
    def _lenient_purity(cls, value: Any) -> float:
        if value is None:
            return 1.0
        return to_number_or_zero(value)

    @field_validator("purchase_price", mode="before")
    @classmethod
    def _lenient_price(cls, value: Any) -> float | None:
        if value is None:
            return None
        return to_number_or_zero(value)

    @computed_field(alias="totalOz")
    @property
    def total_oz(self) -> float:
        """Nominal weight of the entry in troy ounces (purity not applied)."""
        return self.quantity * self.oz_per_unit


class PriceSource(StackModel):
    """Attribution for a spot price quote."""

    model_config = ConfigDict(frozen=True)

    title: str = "Search Source"
    uri: str


class SpotPriceQuote(StackModel):
    """Point-in-time spot price for one metal."""

    model_config = ConfigDict(frozen=True)

    metal: MetalType = MetalType.SILVER
    price: float = Field(description="Spot price per troy oz")
    currency: str = "USD"
    last_updated: datetime = Field(default_factory=_utcnow)
    sources: list[PriceSource] = Field(default_factory=list)


class ParsedItem(StackModel):
    """Structured fields extracted from a free-text item description."""

    name: str
    oz_per_unit: float
    quantity: float
    purity: float
    category: str

    def to_holding(
        self,
        metal_type: MetalType = MetalType.SILVER,
        purchase_price: float | None = None,
        purchase_date: datetime | None = None,
    ) -> Holding:
        """Create a new holding from the parsed fields."""
        return Holding(
            name=self.name,
            metal_type=metal_type,
            category=self.category,
            quantity=self.quantity,
            oz_per_unit=self.oz_per_unit,
            purity=self.purity,
            purchase_price=purchase_price,
            purchase_date=purchase_date,
        )


class PortfolioMetrics(StackModel):
    """Performance figures for a set of holdings at one spot price."""

    model_config = ConfigDict(frozen=True)

    total_cost_basis: float = 0.0
    total_ounces: float = 0.0
    current_value: float = 0.0
    unrealized_gain_loss: float = 0.0
    portfolio_dca: float = Field(default=0.0, alias="portfolioDCA")
    percentage_return: float = 0.0


class DistributionSlice(StackModel):
    """One group of a weight distribution."""

    model_config = ConfigDict(frozen=True)

    name: str
    ounces: float
    percent: float


class StackDocument(StackModel):
    """The per-user persisted document."""

    stack: list[Holding] = Field(default_factory=list)
    last_value: float = 0.0
    last_updated: datetime | None = None

    @field_validator("last_value", mode="before")
    @classmethod
    def _lenient_value(cls, value: Any) -> float:
        return to_number_or_zero(value)


class DistributionKey(str, Enum):
    """What to group a weight distribution by."""

    CATEGORY = "category"
    TYPE = "type"
