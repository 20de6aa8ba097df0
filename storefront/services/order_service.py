"""
Order Service

Turns a validated cart into an order and a payment record. The backend
re-checks every amount and field limit, so a rejection here means the
client's totals disagreed with policy: the cart needs re-validating, not a
blind retry.
"""

import logging
from decimal import Decimal
from typing import Any, Optional

from pydantic import ValidationError

from ..core.errors import (
    BackendError,
    CheckoutError,
    OrderRejectedError,
    PaymentRecordError,
    StorefrontError,
)
from ..models.cart import CartLineItem
from ..models.checkout import (
    CreateOrderData,
    CreateOrderRequest,
    Order,
    OrderItem,
    OrderItemInput,
    PaymentMethod,
    PaymentRecord,
    PaymentStatus,
)
from . import pricing
from .backend_client import BackendClient
from .cart_validator import CartValidator
from .catalog import CatalogService

logger = logging.getLogger(__name__)

CHECK_VIOLATION = "23514"


def default_payment_status(method: PaymentMethod) -> PaymentStatus:
    """Card and PayPal payments are captured before the order is created"""
    if method in (PaymentMethod.CARD, PaymentMethod.PAYPAL):
        return PaymentStatus.COMPLETED
    return PaymentStatus.PENDING


class OrderService:
    """Checkout and order retrieval"""

    def __init__(
        self,
        client: BackendClient,
        catalog: CatalogService,
        validator: CartValidator,
        tolerance: Decimal = pricing.DEFAULT_TOLERANCE,
    ):
        self.client = client
        self.catalog = catalog
        self.validator = validator
        self.tolerance = tolerance

    # ==================== Checkout ====================

    async def create_order(self, data: CreateOrderData) -> Order:
        """
        Place an order for the given cart lines.

        Raises:
            CartChangedError: lines reference missing or unavailable products
            OrderRejectedError: amounts or fields broke a backend constraint
            PaymentRecordError: the order was created but its payment wasn't recorded
            CheckoutError: anything else that stopped the order
        """
        await self.validator.require_valid(data.lines)

        request = self._build_request(data)
        payload = request.model_dump(mode="json")

        try:
            order_id = await self.client.create_order(payload)
        except BackendError as e:
            if self._is_constraint_violation(e):
                logger.warning(f"Order rejected by backend: {e.message}")
                raise OrderRejectedError(detail=e.message) from e
            raise CheckoutError() from e
        except StorefrontError as e:
            raise CheckoutError() from e

        logger.info(f"Order {order_id} created: {request.total} via {data.payment_method.value}")

        # Stock moved for these products; don't keep serving the old numbers
        self.catalog.invalidate_products(line.product.id for line in data.lines)

        if data.payment_id:
            await self.create_payment_record(
                order_id=order_id,
                payment_method=data.payment_method,
                payment_id=data.payment_id,
                amount=request.total,
                status=default_payment_status(data.payment_method),
                paypal_details=data.paypal_details,
                stripe_details=data.stripe_details,
            )

        try:
            order = await self.get_order(order_id)
        except StorefrontError as e:
            logger.error(f"Failed to load created order {order_id}: {e}")
            order = None
        if order is None:
            raise CheckoutError("Your order was placed but we couldn't load it. Please check your orders.")
        return order

    def _build_request(self, data: CreateOrderData) -> CreateOrderRequest:
        summary = pricing.order_summary(data.lines)
        subtotal = pricing.round_money(summary.subtotal)
        delivery_total = pricing.round_money(summary.delivery_total)
        # Rounded parts, so the server's total == subtotal + delivery check holds exactly
        total = subtotal + delivery_total
        if not pricing.amounts_match(total, summary.total, self.tolerance):
            logger.warning(f"Rounded total {total} drifted from computed total {summary.total}")

        try:
            return CreateOrderRequest(
                email=data.email,
                full_name=data.full_name,
                address=data.address,
                subtotal=subtotal,
                delivery_total=delivery_total,
                total=total,
                payment_method=data.payment_method,
                order_items=[self._order_item(line) for line in data.lines],
            )
        except ValidationError as e:
            logger.warning(f"Order failed local constraint checks: {e}")
            raise OrderRejectedError(
                "Your order exceeds what we can accept online. Please review your cart.",
                detail=str(e),
            ) from e

    @staticmethod
    def _order_item(line: CartLineItem) -> OrderItemInput:
        return OrderItemInput(
            product_id=line.product.id,
            product_name=line.product.name,
            product_price=pricing.round_money(pricing.effective_price(line)),
            quantity=line.quantity,
            delivery_charge=pricing.round_money(line.product.delivery_charge),
            custom_selections=line.custom_selections,
        )

    @staticmethod
    def _is_constraint_violation(error: BackendError) -> bool:
        if error.code == CHECK_VIOLATION:
            return True
        return error.status_code == 400 and "constraint" in (error.message or "").lower()

    async def create_payment_record(
        self,
        order_id: str,
        payment_method: PaymentMethod,
        payment_id: str,
        amount: Any,
        status: PaymentStatus = PaymentStatus.COMPLETED,
        paypal_details: Optional[dict] = None,
        stripe_details: Optional[dict] = None,
    ) -> str:
        """Attach a payment to an order"""
        record = PaymentRecord(
            order_id=order_id,
            payment_method=payment_method,
            payment_id=payment_id,
            amount=pricing.round_money(amount),
            status=status,
            paypal_details=paypal_details,
            stripe_details=stripe_details,
        )
        try:
            return await self.client.create_payment(record.model_dump(mode="json"))
        except StorefrontError as e:
            logger.error(f"Failed to create payment record for order {order_id}: {e}")
            raise PaymentRecordError(order_id) from e

    # ==================== Retrieval ====================

    async def get_order(self, order_id: str) -> Optional[Order]:
        row = await self.client.get_order(order_id)
        return Order.model_validate(row) if row else None

    async def get_order_items(self, order_id: str) -> list[OrderItem]:
        rows = await self.client.get_order_items(order_id)
        return [OrderItem.model_validate(row) for row in rows]

    async def get_user_orders(self, limit: int = 50) -> list[Order]:
        rows = await self.client.get_user_orders(limit=limit)
        return [Order.model_validate(row) for row in rows]
