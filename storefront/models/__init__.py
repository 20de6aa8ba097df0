# Storefront Models

from .product import (
    Product,
    ProductFilter,
    ProductInput,
    CustomProperty,
    CustomPropertiesConfig,
    DropdownProperty,
    TextProperty,
    TextareaProperty,
    NumberProperty,
)
from .cart import (
    CartLineItem,
    CartSummary,
    CleanupResult,
    CustomPropertySelection,
    ValidationResult,
)
from .checkout import (
    CreateOrderData,
    CreateOrderRequest,
    CustomerInfo,
    Order,
    OrderAddress,
    OrderItem,
    OrderItemInput,
    OrderStatus,
    PaymentMethod,
    PaymentRecord,
    PaymentStatus,
)

__all__ = [
    "Product",
    "ProductFilter",
    "ProductInput",
    "CustomProperty",
    "CustomPropertiesConfig",
    "DropdownProperty",
    "TextProperty",
    "TextareaProperty",
    "NumberProperty",
    "CartLineItem",
    "CartSummary",
    "CleanupResult",
    "CustomPropertySelection",
    "ValidationResult",
    "CreateOrderData",
    "CreateOrderRequest",
    "CustomerInfo",
    "Order",
    "OrderAddress",
    "OrderItem",
    "OrderItemInput",
    "OrderStatus",
    "PaymentMethod",
    "PaymentRecord",
    "PaymentStatus",
]
