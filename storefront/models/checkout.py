"""Order and payment models"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .cart import CartLineItem, CustomPropertySelection

EMAIL_PATTERN = r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$"

MAX_ORDER_TOTAL = Decimal("100000")
MAX_DELIVERY_TOTAL = Decimal("1000")
MAX_ITEM_PRICE = Decimal("10000")
MAX_ITEM_DELIVERY = Decimal("100")
MAX_ITEM_QUANTITY = 100


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    CARD = "card"
    PAYPAL = "paypal"
    STRIPE = "stripe"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class OrderAddress(BaseModel):
    """Delivery address for an order"""
    address: str = Field(min_length=1, max_length=500)
    city: str = Field(min_length=1, max_length=100)
    postcode: str = Field(min_length=1, max_length=20)
    country: str = "GB"


class CustomerInfo(BaseModel):
    """Who the order is for"""
    email: str = Field(pattern=EMAIL_PATTERN)
    full_name: str = Field(min_length=2, max_length=100)
    address: OrderAddress


class CreateOrderData(CustomerInfo):
    """Everything needed to place an order from cart lines"""
    lines: list[CartLineItem] = Field(min_length=1)
    payment_method: PaymentMethod
    payment_id: Optional[str] = None
    paypal_details: Optional[dict[str, Any]] = None
    stripe_details: Optional[dict[str, Any]] = None


class OrderItemInput(BaseModel):
    """Order line as submitted to the create_order procedure"""
    product_id: str
    product_name: str
    product_price: Decimal = Field(ge=0, le=MAX_ITEM_PRICE)
    quantity: int = Field(ge=1, le=MAX_ITEM_QUANTITY)
    delivery_charge: Decimal = Field(default=Decimal("0"), ge=0, le=MAX_ITEM_DELIVERY)
    custom_selections: Optional[list[CustomPropertySelection]] = None


class CreateOrderRequest(BaseModel):
    """Payload for the create_order procedure, with the server's amount checks"""
    email: str = Field(pattern=EMAIL_PATTERN)
    full_name: str = Field(min_length=2, max_length=100)
    address: OrderAddress
    subtotal: Decimal = Field(ge=0, le=MAX_ORDER_TOTAL)
    delivery_total: Decimal = Field(ge=0, le=MAX_DELIVERY_TOTAL)
    total: Decimal = Field(ge=0, le=MAX_ORDER_TOTAL)
    payment_method: PaymentMethod
    order_items: list[OrderItemInput] = Field(min_length=1)

    @model_validator(mode="after")
    def _total_matches_parts(self) -> "CreateOrderRequest":
        if abs(self.total - (self.subtotal + self.delivery_total)) >= Decimal("0.01"):
            raise ValueError("total must equal subtotal + delivery_total")
        return self


class Order(BaseModel):
    """Order as read back from the backend"""

    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: Optional[str] = None
    email: str
    full_name: str
    address: Optional[OrderAddress] = None
    subtotal: Decimal
    delivery_total: Decimal = Decimal("0")
    total: Decimal
    status: OrderStatus = OrderStatus.PENDING
    payment_method: PaymentMethod
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderItem(BaseModel):
    """Historical order line"""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    order_id: Optional[str] = None
    product_id: Optional[str] = None
    product_name: str
    product_price: Decimal
    quantity: int
    delivery_charge: Decimal = Decimal("0")
    custom_selections: Optional[list[CustomPropertySelection]] = None


class PaymentRecord(BaseModel):
    """Payment attached to an order"""
    order_id: str
    payment_method: PaymentMethod
    payment_id: str
    amount: Decimal = Field(ge=0, le=MAX_ORDER_TOTAL)
    status: PaymentStatus = PaymentStatus.PENDING
    paypal_details: Optional[dict[str, Any]] = None
    stripe_details: Optional[dict[str, Any]] = None
