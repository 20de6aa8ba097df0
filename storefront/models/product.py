"""Product and customization models"""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, Iterator, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)


class _CustomPropertyBase(BaseModel):
    """Fields shared by every custom property variant"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    label: str = ""
    required: bool = False
    description: Optional[str] = None


class DropdownProperty(_CustomPropertyBase):
    """Choice from a fixed list of options, optionally with per-option prices"""

    type: Literal["dropdown"] = "dropdown"
    options: list[str] = Field(default_factory=list)
    option_prices: dict[str, Decimal] = Field(default_factory=dict, alias="optionPrices")

    @field_validator("options", mode="before")
    @classmethod
    def _options_default(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("option_prices", mode="before")
    @classmethod
    def _drop_unparseable_prices(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return {}
        prices = {}
        for option, price in value.items():
            if price is None or isinstance(price, bool):
                continue
            try:
                parsed = Decimal(str(price))
            except (InvalidOperation, ValueError):
                parsed = None
            if parsed is None or not parsed.is_finite():
                logger.debug(f"Ignoring unparseable price {price!r} for option {option!r}")
                continue
            prices[option] = parsed
        return prices

    @model_validator(mode="after")
    def _normalize_options(self) -> "DropdownProperty":
        unique = list(dict.fromkeys(self.options))
        orphaned = [option for option in self.option_prices if option not in unique]
        if orphaned:
            logger.debug(f"Dropping prices for unknown options {orphaned} on property {self.id}")
        self.options = unique
        self.option_prices = {
            option: price
            for option, price in self.option_prices.items()
            if option in unique
        }
        return self

    def price_for(self, option: Any) -> Optional[Decimal]:
        """Override price for an option, or None when the option has none"""
        if not isinstance(option, str):
            return None
        return self.option_prices.get(option)


class TextProperty(_CustomPropertyBase):
    type: Literal["text"] = "text"
    max_length: Optional[int] = Field(default=None, alias="maxLength")
    placeholder: Optional[str] = None


class TextareaProperty(_CustomPropertyBase):
    type: Literal["textarea"] = "textarea"
    max_length: Optional[int] = Field(default=None, alias="maxLength")
    placeholder: Optional[str] = None


class NumberProperty(_CustomPropertyBase):
    type: Literal["number"] = "number"
    min: Optional[float] = None
    max: Optional[float] = None
    step: Optional[float] = None


CustomProperty = Annotated[
    Union[DropdownProperty, TextProperty, TextareaProperty, NumberProperty],
    Field(discriminator="type"),
]


class CustomPropertiesConfig(BaseModel):
    """Ordered customization options offered for a product"""

    properties: list[CustomProperty] = Field(default_factory=list)

    @field_validator("properties", mode="before")
    @classmethod
    def _properties_default(cls, value: Any) -> Any:
        return [] if value is None else value

    def get(self, property_id: str) -> Optional[CustomProperty]:
        return next((p for p in self.properties if p.id == property_id), None)

    def dropdowns(self) -> Iterator[DropdownProperty]:
        """Dropdown properties in definition order"""
        for prop in self.properties:
            if isinstance(prop, DropdownProperty):
                yield prop

    def missing_required(self, selections: Optional[list]) -> list[CustomProperty]:
        """Required properties that have no non-empty selection"""
        chosen = {
            s.property_id
            for s in selections or []
            if s.value is not None and str(s.value).strip() != ""
        }
        return [p for p in self.properties if p.required and p.id not in chosen]


class Product(BaseModel):
    """Product snapshot as served by the backend"""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    description: Optional[str] = None
    price: Decimal
    price_max: Optional[Decimal] = None
    image_url: Optional[str] = None
    category: Optional[str] = None
    stock_quantity: Optional[int] = None
    delivery_charge: Optional[Decimal] = None
    is_available: bool = True
    custom_properties: Optional[CustomPropertiesConfig] = None
    sort_order: int = 0
    created_at: Optional[datetime] = None

    @field_validator("is_available", mode="before")
    @classmethod
    def _available_default(cls, value: Any) -> Any:
        return True if value is None else value

    @field_validator("sort_order", mode="before")
    @classmethod
    def _sort_order_default(cls, value: Any) -> Any:
        return 0 if value is None else value


class ProductFilter(BaseModel):
    """Filters for a product list read"""

    category: Optional[str] = None
    search: Optional[str] = None
    limit: int = Field(default=50, ge=1, le=100)
    offset: int = Field(default=0, ge=0)

    @field_validator("category", "search", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("category")
    @classmethod
    def _all_means_any(cls, value: Optional[str]) -> Optional[str]:
        return None if value == "All" else value

    def cache_key(self) -> str:
        return (
            f"products_list:category={self.category or ''}"
            f"&search={self.search or ''}&limit={self.limit}&offset={self.offset}"
        )


class ProductInput(BaseModel):
    """Product fields accepted by the admin create/update procedures"""

    name: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=2000)
    price: Decimal = Field(ge=0, le=Decimal("10000"))
    price_max: Optional[Decimal] = Field(default=None, ge=0, le=Decimal("10000"))
    image_url: str = ""
    category: str = Field(min_length=1, max_length=100)
    stock_quantity: int = Field(default=0, ge=0, le=10000)
    delivery_charge: Decimal = Field(default=Decimal("0"), ge=0, le=Decimal("100"))
    is_available: bool = True
    custom_properties: Optional[CustomPropertiesConfig] = None
    # None: appended after existing products on create, unchanged on update
    sort_order: Optional[int] = Field(default=None, ge=0)
