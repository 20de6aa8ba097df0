from decimal import Decimal

import pytest
from pydantic import ValidationError

from storefront.models import (
    CreateOrderRequest,
    CustomPropertiesConfig,
    DropdownProperty,
    NumberProperty,
    OrderAddress,
    Product,
    ProductFilter,
    TextProperty,
)


def test_custom_properties_dispatch_on_type():
    config = CustomPropertiesConfig.model_validate({
        "properties": [
            {"id": "size", "type": "dropdown", "options": ["S", "S", "M"]},
            {"id": "name", "type": "text", "maxLength": 12},
            {"id": "count", "type": "number", "min": 1},
        ]
    })

    size, name, count = config.properties
    assert isinstance(size, DropdownProperty)
    assert size.options == ["S", "M"]
    assert isinstance(name, TextProperty) and name.max_length == 12
    assert isinstance(count, NumberProperty)
    assert [d.id for d in config.dropdowns()] == ["size"]


def test_non_finite_option_prices_are_dropped():
    size = DropdownProperty.model_validate({
        "id": "size",
        "options": ["S", "M", "L"],
        "optionPrices": {"S": "NaN", "M": "Infinity", "L": "12.50"},
    })
    assert size.option_prices == {"L": Decimal("12.50")}


def test_unknown_property_type_is_rejected():
    with pytest.raises(ValidationError):
        CustomPropertiesConfig.model_validate({"properties": [{"id": "x", "type": "colour-wheel"}]})


def test_missing_required():
    config = CustomPropertiesConfig.model_validate({
        "properties": [
            {"id": "size", "type": "dropdown", "required": True, "options": ["S"]},
            {"id": "note", "type": "textarea"},
        ]
    })
    assert [p.id for p in config.missing_required(None)] == ["size"]


def test_product_defaults():
    product = Product.model_validate({"id": "p", "price": 5, "is_available": None, "sort_order": None, "extra": 1})
    assert product.is_available is True
    assert product.sort_order == 0
    assert product.price == Decimal("5")
    assert product.custom_properties is None


def test_product_filter_normalises():
    assert ProductFilter(category="All", search="  ").cache_key() == ProductFilter().cache_key()
    assert ProductFilter(category="Hats", limit=10).cache_key() == (
        "products_list:category=Hats&search=&limit=10&offset=0"
    )
    with pytest.raises(ValidationError):
        ProductFilter(limit=0)


def order_request(**overrides):
    fields = {
        "email": "ada@example.com",
        "full_name": "Ada Lovelace",
        "address": OrderAddress(address="1 Loom St", city="London", postcode="N1 1AA"),
        "subtotal": Decimal("10.00"),
        "delivery_total": Decimal("2.00"),
        "total": Decimal("12.00"),
        "payment_method": "card",
        "order_items": [
            {"product_id": "p", "product_name": "P", "product_price": "10.00", "quantity": 1},
        ],
    }
    fields.update(overrides)
    return CreateOrderRequest(**fields)


def test_order_request_total_check():
    assert order_request(total=Decimal("12.005")).total == Decimal("12.005")
    with pytest.raises(ValidationError):
        order_request(total=Decimal("12.01"))


@pytest.mark.parametrize(
    "overrides",
    [
        {"email": "not-an-email"},
        {"full_name": "A"},
        {"delivery_total": Decimal("1000.01"), "total": Decimal("1010.01")},
        {"order_items": []},
    ],
)
def test_order_request_limits(overrides):
    with pytest.raises(ValidationError):
        order_request(**overrides)
