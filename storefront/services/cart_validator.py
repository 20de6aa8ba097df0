"""
Cart Validator

Checks cart lines against current product state read through the catalog
cache (brief staleness is acceptable). A line is invalid when its product no
longer resolves or is flagged unavailable.

Load-time callers prune silently via cleanup(); checkout calls
require_valid(), which raises instead, since items must never vanish from a
cart at the moment of payment.
"""

import asyncio
import logging
from typing import Iterable, Optional

from ..core.errors import CartChangedError, CheckoutError, StorefrontError
from ..models.cart import CartLineItem, CleanupResult, ValidationResult
from ..models.product import Product
from . import pricing
from .catalog import CatalogService

logger = logging.getLogger(__name__)


class CartValidator:
    """Reconciles cart lines with the catalog"""

    def __init__(self, catalog: CatalogService):
        self.catalog = catalog

    async def validate(self, lines: Iterable[CartLineItem]) -> ValidationResult:
        """Report every invalid line; lookup failures propagate"""
        lines = list(lines)
        if not lines:
            return ValidationResult(valid=True)

        product_ids = list(dict.fromkeys(line.product.id for line in lines))
        products = await asyncio.gather(
            *(self.catalog.get_product(product_id) for product_id in product_ids)
        )
        current: dict[str, Optional[Product]] = dict(zip(product_ids, products))

        invalid_items: list[CartLineItem] = []
        errors: list[str] = []
        warnings: list[str] = []

        for line in lines:
            name = line.product.name or line.product.id
            product = current.get(line.product.id)

            if product is None:
                invalid_items.append(line)
                errors.append(f"{name} is no longer in the catalog")
                continue
            if not product.is_available:
                invalid_items.append(line)
                errors.append(f"{name} is no longer available")
                continue

            warnings.extend(self._line_warnings(line, product))

        if invalid_items:
            logger.info(f"Cart validation found {len(invalid_items)} invalid lines")

        return ValidationResult(
            valid=not invalid_items,
            invalid_items=invalid_items,
            errors=errors,
            warnings=warnings,
        )

    @staticmethod
    def _line_warnings(line: CartLineItem, product: Product) -> list[str]:
        """Changes worth telling the customer about that don't invalidate the line"""
        name = product.name or product.id
        warnings = []

        snapshot = line.product
        if pricing.to_money(snapshot.price) != pricing.to_money(product.price):
            warnings.append(
                f"The price of {name} changed from {pricing.round_money(snapshot.price)} "
                f"to {pricing.round_money(product.price)}"
            )
        if pricing.to_money(snapshot.delivery_charge) != pricing.to_money(product.delivery_charge):
            warnings.append(f"The delivery charge for {name} changed")

        if product.stock_quantity is not None and product.stock_quantity < line.quantity:
            warnings.append(f"Only {product.stock_quantity} of {name} left in stock")

        if product.custom_properties:
            for prop in product.custom_properties.missing_required(line.custom_selections):
                warnings.append(f"{name} needs a value for {prop.label or prop.id}")

        return warnings

    async def cleanup(self, lines: Iterable[CartLineItem]) -> CleanupResult:
        """Lines without the invalid ones; the input list is left untouched"""
        lines = list(lines)
        validation = await self.validate(lines)
        if validation.valid:
            return CleanupResult(lines=lines, removed_count=0)

        invalid_ids = {line.id for line in validation.invalid_items}
        kept = [line for line in lines if line.id not in invalid_ids]
        return CleanupResult(lines=kept, removed_count=len(lines) - len(kept))

    async def require_valid(self, lines: Iterable[CartLineItem]) -> ValidationResult:
        """Checkout-time validation: raise instead of pruning"""
        try:
            validation = await self.validate(lines)
        except StorefrontError as e:
            logger.warning(f"Could not validate cart for checkout: {e}")
            raise CheckoutError(
                "We couldn't confirm the items in your cart. Please try again."
            ) from e

        if not validation.valid:
            raise CartChangedError(validation)
        return validation
