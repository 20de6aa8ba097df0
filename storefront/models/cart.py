"""Cart models"""

from decimal import Decimal
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .product import Product


class CustomPropertySelection(BaseModel):
    """Customer's value for one custom property"""

    model_config = ConfigDict(populate_by_name=True)

    property_id: str = Field(alias="propertyId")
    value: Union[str, int, float]


class CartLineItem(BaseModel):
    """One line in the cart: a product, a quantity and optional selections"""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    product: Product
    quantity: int = Field(ge=1)
    custom_selections: Optional[list[CustomPropertySelection]] = Field(
        default=None, alias="customSelections"
    )

    def selection_key(self) -> frozenset:
        """Order-insensitive identity of the selections on this line"""
        return selection_key(self.custom_selections)


def selection_key(selections: Optional[list[CustomPropertySelection]]) -> frozenset:
    return frozenset((s.property_id, s.value) for s in selections or [])


class CartSummary(BaseModel):
    """Derived cart totals"""
    subtotal: Decimal
    delivery_total: Decimal
    total: Decimal
    item_count: int


class ValidationResult(BaseModel):
    """Outcome of checking cart lines against current product state"""
    valid: bool
    invalid_items: list[CartLineItem] = []
    errors: list[str] = []
    warnings: list[str] = []


class CleanupResult(BaseModel):
    """Cart lines left after pruning invalid ones"""
    lines: list[CartLineItem]
    removed_count: int
