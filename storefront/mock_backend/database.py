"""In-memory stand-in for the storefront database"""

import re
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from ..models.checkout import (
    EMAIL_PATTERN,
    MAX_DELIVERY_TOTAL,
    MAX_ITEM_DELIVERY,
    MAX_ITEM_PRICE,
    MAX_ITEM_QUANTITY,
    MAX_ORDER_TOTAL,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from ..models.product import Product, ProductInput

_EPOCH = datetime(2025, 12, 1, tzinfo=timezone.utc)


def _seed(index: int, **fields: Any) -> Product:
    return Product(
        id=f"prod-{index:03d}",
        created_at=_EPOCH + timedelta(days=index),
        **fields,
    )


# Mock product catalog
PRODUCTS: list[Product] = [
    _seed(
        1,
        name="Chunky Knit Beanie",
        description="Hand-knitted merino beanie with a folded brim.",
        price=Decimal("20.00"),
        category="Hats",
        stock_quantity=12,
        delivery_charge=Decimal("3.50"),
        custom_properties={
            "properties": [
                {
                    "id": "size",
                    "type": "dropdown",
                    "label": "Size",
                    "required": True,
                    "options": ["Small", "Medium", "Large"],
                    "optionPrices": {"Small": 24.00, "Medium": 28.00, "Large": 32.00},
                },
                {
                    "id": "colour",
                    "type": "dropdown",
                    "label": "Colour",
                    "options": ["Oat", "Forest", "Rust"],
                },
            ]
        },
    ),
    _seed(
        2,
        name="Cable Scarf",
        description="Long cable-knit scarf in soft alpaca blend.",
        price=Decimal("35.00"),
        category="Scarves",
        stock_quantity=8,
        delivery_charge=Decimal("3.50"),
    ),
    _seed(
        3,
        name="Granny Square Blanket",
        description="Made-to-order crochet throw, priced by size.",
        price=Decimal("120.00"),
        price_max=Decimal("220.00"),
        category="Blankets",
        stock_quantity=3,
        delivery_charge=Decimal("9.95"),
        custom_properties={
            "properties": [
                {
                    "id": "name",
                    "type": "text",
                    "label": "Name to embroider",
                    "maxLength": 20,
                },
                {
                    "id": "notes",
                    "type": "textarea",
                    "label": "Colour notes",
                },
            ]
        },
    ),
    _seed(
        4,
        name="Market Tote",
        description="Sturdy crochet market bag in cotton twine.",
        price=Decimal("28.00"),
        category="Bags",
        stock_quantity=0,
        delivery_charge=Decimal("4.00"),
        is_available=False,
    ),
    _seed(
        5,
        name="Coaster Set",
        description="Set of round crochet coasters.",
        price=Decimal("12.00"),
        category="Home",
        stock_quantity=40,
        custom_properties={
            "properties": [
                {
                    "id": "count",
                    "type": "number",
                    "label": "Number of coasters",
                    "min": 2,
                    "max": 12,
                    "step": 1,
                },
            ]
        },
    ),
]


class ConstraintViolation(Exception):
    """A write broke one of the table constraints"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def _money(value: Any, field: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ConstraintViolation(f"{field} is not a number") from None


class MockDatabase:
    """Products, orders and payments held in memory"""

    def __init__(self, products: Optional[Iterable[Product]] = None):
        seed = PRODUCTS if products is None else products
        self.products: dict[str, Product] = {p.id: p.model_copy(deep=True) for p in seed}
        self.orders: dict[str, dict] = {}
        self.order_items: dict[str, list[dict]] = {}
        self.payments: dict[str, dict] = {}

    # ==================== Products ====================

    def search_products(
        self,
        category: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
        include_unavailable: bool = False,
    ) -> list[Product]:
        """Products matching filters, by admin sort order then newest first"""
        results = [
            p for p in self.products.values()
            if p.is_available or include_unavailable
        ]

        if category:
            results = [p for p in results if p.category == category]

        if search:
            needle = search.lower()
            results = [
                p for p in results
                if needle in p.name.lower()
                or needle in (p.description or "").lower()
                or needle in (p.category or "").lower()
            ]

        results.sort(key=lambda p: p.created_at or _EPOCH, reverse=True)
        results.sort(key=lambda p: p.sort_order)
        return results[offset : offset + limit]

    def get_product(self, product_id: str, include_unavailable: bool = False) -> Optional[Product]:
        product = self.products.get(product_id)
        if product is None or not (product.is_available or include_unavailable):
            return None
        return product

    def get_products_by_ids(self, product_ids: Iterable[str]) -> list[Product]:
        ids = set(product_ids)
        return [p for p in self.products.values() if p.id in ids]

    def create_product(self, data: ProductInput) -> Product:
        fields = data.model_dump()
        if fields["sort_order"] is None:
            fields["sort_order"] = max((p.sort_order for p in self.products.values()), default=0) + 1
        product = Product(id=str(uuid.uuid4()), created_at=datetime.now(timezone.utc), **fields)
        self.products[product.id] = product
        return product

    def update_product(self, product_id: str, data: ProductInput) -> Optional[Product]:
        existing = self.products.get(product_id)
        if existing is None:
            return None
        fields = data.model_dump()
        if fields["sort_order"] is None:
            fields["sort_order"] = existing.sort_order
        product = Product(id=product_id, created_at=existing.created_at, **fields)
        self.products[product_id] = product
        return product

    def delete_product(self, product_id: str) -> bool:
        return self.products.pop(product_id, None) is not None

    def set_availability(self, product_id: str, available: bool) -> bool:
        product = self.products.get(product_id)
        if product is None:
            return False
        product.is_available = available
        return True

    # ==================== Orders ====================

    def create_order(self, order: dict[str, Any], user_id: Optional[str] = None) -> str:
        """Insert an order and its items after the same checks the real tables apply"""
        self._check_order(order)

        now = datetime.now(timezone.utc)
        order_id = str(uuid.uuid4())
        self.orders[order_id] = {
            "id": order_id,
            "user_id": user_id,
            "email": order["email"],
            "full_name": order["full_name"],
            "address": order.get("address"),
            "subtotal": str(_money(order["subtotal"], "subtotal")),
            "delivery_total": str(_money(order["delivery_total"], "delivery_total")),
            "total": str(_money(order["total"], "total")),
            "status": OrderStatus.PENDING.value,
            "payment_method": order["payment_method"],
            "created_at": now.isoformat(),
            "updated_at": now.isoformat(),
        }

        items = []
        for item in order["order_items"]:
            items.append({
                "id": str(uuid.uuid4()),
                "order_id": order_id,
                "product_id": item.get("product_id"),
                "product_name": item["product_name"],
                "product_price": str(_money(item["product_price"], "product_price")),
                "quantity": int(item["quantity"]),
                "delivery_charge": str(_money(item.get("delivery_charge", 0), "delivery_charge")),
                "custom_selections": item.get("custom_selections"),
            })
            product = self.products.get(item.get("product_id"))
            if product is not None and product.stock_quantity is not None:
                product.stock_quantity = max(0, product.stock_quantity - int(item["quantity"]))
        self.order_items[order_id] = items

        return order_id

    def _check_order(self, order: dict[str, Any]) -> None:
        for field in ("email", "full_name", "subtotal", "delivery_total", "total", "payment_method", "order_items"):
            if order.get(field) is None:
                raise ConstraintViolation(f"null value in column {field}")

        if not re.match(EMAIL_PATTERN, order["email"]):
            raise ConstraintViolation("orders_email_format_check")
        if not 2 <= len(order["full_name"]) <= 100:
            raise ConstraintViolation("orders_full_name_length_check")
        if order["payment_method"] not in {m.value for m in PaymentMethod}:
            raise ConstraintViolation("orders_payment_method_check")

        subtotal = _money(order["subtotal"], "subtotal")
        delivery = _money(order["delivery_total"], "delivery_total")
        total = _money(order["total"], "total")
        if min(subtotal, delivery, total) < 0:
            raise ConstraintViolation("orders_amounts_non_negative_check")
        if total > MAX_ORDER_TOTAL:
            raise ConstraintViolation("orders_total_upper_limit_check")
        if subtotal > MAX_ORDER_TOTAL:
            raise ConstraintViolation("orders_subtotal_upper_limit_check")
        if delivery > MAX_DELIVERY_TOTAL:
            raise ConstraintViolation("orders_delivery_upper_limit_check")
        if abs(total - (subtotal + delivery)) >= Decimal("0.01"):
            raise ConstraintViolation("orders_total_calculation_check")

        if not order["order_items"]:
            raise ConstraintViolation("order must contain at least one item")
        for item in order["order_items"]:
            quantity = int(item.get("quantity", 0))
            if not 1 <= quantity <= MAX_ITEM_QUANTITY:
                raise ConstraintViolation("order_items_quantity_upper_limit_check")
            if _money(item.get("product_price"), "product_price") > MAX_ITEM_PRICE:
                raise ConstraintViolation("order_items_price_upper_limit_check")
            if _money(item.get("delivery_charge", 0), "delivery_charge") > MAX_ITEM_DELIVERY:
                raise ConstraintViolation("order_items_delivery_upper_limit_check")

    def create_payment(self, payment: dict[str, Any]) -> str:
        if payment.get("order_id") not in self.orders:
            raise ConstraintViolation("payments_order_id_fkey")
        if payment.get("status", PaymentStatus.PENDING.value) not in {s.value for s in PaymentStatus}:
            raise ConstraintViolation("payments_status_check")
        amount = _money(payment.get("amount"), "amount")
        if not Decimal("0") <= amount <= MAX_ORDER_TOTAL:
            raise ConstraintViolation("payments_amount_upper_limit_check")

        payment_id = str(uuid.uuid4())
        self.payments[payment_id] = {
            "id": payment_id,
            **payment,
            "amount": str(amount),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        if payment.get("status") == PaymentStatus.COMPLETED.value:
            self.orders[payment["order_id"]]["status"] = OrderStatus.PAID.value
        return payment_id

    def visible_orders(self, user_id: Optional[str], is_admin: bool) -> list[dict]:
        return [
            o for o in self.orders.values()
            if is_admin or o["user_id"] == user_id
        ]

    def visible_order_items(self, user_id: Optional[str], is_admin: bool) -> list[dict]:
        visible = {o["id"] for o in self.visible_orders(user_id, is_admin)}
        return [
            item
            for order_id, items in self.order_items.items()
            if order_id in visible
            for item in items
        ]
