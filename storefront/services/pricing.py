"""
Pricing Calculator

Pure functions deriving prices and totals from cart lines. None of them
raise on missing or malformed optional fields: they fall back to zero or to
the product's base price, since snapshots restored from cache may be partial.

Override policy: when a line has selections on several dropdown properties
that each price the chosen option, the first such property in the product's
definition order sets the price. This is a product decision, not a derived
rule; see DESIGN.md before changing it.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, NamedTuple, Optional

from ..models.cart import CartLineItem, CartSummary
from ..models.product import CustomPropertiesConfig

ZERO = Decimal("0")
CENT = Decimal("0.01")
DEFAULT_TOLERANCE = CENT


class PriceRange(NamedTuple):
    min: Decimal
    max: Decimal


def to_money(value: Any) -> Decimal:
    """Best-effort conversion to Decimal; anything unusable becomes zero"""
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        return value if value.is_finite() else ZERO
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return ZERO
    return result if result.is_finite() else ZERO


def round_money(value: Any) -> Decimal:
    """Round to whole cents. Only for display and submission, never mid-calculation"""
    return to_money(value).quantize(CENT, rounding=ROUND_HALF_UP)


def effective_price(line: CartLineItem) -> Decimal:
    """Unit price for a line, honouring dropdown option price overrides"""
    product = line.product
    base = to_money(getattr(product, "price", None))
    selections = line.custom_selections
    if not selections:
        return base

    config = getattr(product, "custom_properties", None)
    if not config:
        return base

    chosen = {s.property_id: s.value for s in selections}
    for dropdown in config.dropdowns():
        if dropdown.id not in chosen:
            continue
        override = dropdown.price_for(chosen[dropdown.id])
        if override is not None:
            return to_money(override)

    return base


def price_range(
    custom_properties: Optional[CustomPropertiesConfig],
    base_price: Any,
    base_price_max: Any = None,
) -> PriceRange:
    """
    (min, max) price a product can sell at.

    Once any dropdown option carries a price, the range comes from option
    prices alone and the base price bounds are ignored.
    """
    low = to_money(base_price)
    high = to_money(base_price_max) if base_price_max is not None else low
    if not custom_properties:
        return PriceRange(low, high)

    option_prices = [
        to_money(price)
        for dropdown in custom_properties.dropdowns()
        for price in dropdown.option_prices.values()
    ]
    if not option_prices:
        return PriceRange(low, high)

    return PriceRange(min(option_prices), max(option_prices))


def subtotal(lines: Iterable[CartLineItem]) -> Decimal:
    return sum((effective_price(line) * line.quantity for line in lines), ZERO)


def delivery_total(lines: Iterable[CartLineItem]) -> Decimal:
    return sum(
        (to_money(getattr(line.product, "delivery_charge", None)) * line.quantity for line in lines),
        ZERO,
    )


def total(lines: Iterable[CartLineItem]) -> Decimal:
    lines = list(lines)
    return subtotal(lines) + delivery_total(lines)


def item_count(lines: Iterable[CartLineItem]) -> int:
    return sum(line.quantity for line in lines)


def order_summary(lines: Iterable[CartLineItem]) -> CartSummary:
    """All derived cart totals in one pass over the lines"""
    lines = list(lines)
    sub = subtotal(lines)
    delivery = delivery_total(lines)
    return CartSummary(
        subtotal=sub,
        delivery_total=delivery,
        total=sub + delivery,
        item_count=item_count(lines),
    )


def amounts_match(actual: Any, expected: Any, tolerance: Decimal = DEFAULT_TOLERANCE) -> bool:
    return abs(to_money(actual) - to_money(expected)) < tolerance


def validate_cart_totals(
    lines: Iterable[CartLineItem],
    expected_subtotal: Any,
    expected_delivery: Any,
    expected_total: Any,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> bool:
    """Check client totals against amounts computed elsewhere (e.g. by the server)"""
    summary = order_summary(lines)
    return (
        amounts_match(summary.subtotal, expected_subtotal, tolerance)
        and amounts_match(summary.delivery_total, expected_delivery, tolerance)
        and amounts_match(summary.total, expected_total, tolerance)
    )
