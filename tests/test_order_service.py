from decimal import Decimal

import pytest

from storefront.core.errors import (
    BackendError,
    BackendUnavailableError,
    CartChangedError,
    CheckoutError,
    OrderRejectedError,
    PaymentRecordError,
)
from storefront.models import (
    CreateOrderData,
    OrderAddress,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from storefront.services.cart_validator import CartValidator
from storefront.services.catalog import CatalogService, detail_key
from storefront.services.order_service import OrderService, default_payment_status

from conftest import StubBackend, make_line, make_product, select


def order_data(lines, payment_method=PaymentMethod.CARD, payment_id=None):
    return CreateOrderData(
        email="ada@example.com",
        full_name="Ada Lovelace",
        address=OrderAddress(address="1 Loom St", city="London", postcode="N1 1AA"),
        lines=lines,
        payment_method=payment_method,
        payment_id=payment_id,
    )


@pytest.fixture
def orders(backend, catalog):
    return OrderService(backend, catalog, CartValidator(catalog))


class FailingOrderBackend(StubBackend):
    """Serves products but fails order creation with a fixed error"""

    def __init__(self, products, order_error):
        super().__init__(products)
        self.order_error = order_error

    async def create_order(self, order):
        self.calls.append(("create_order", order))
        raise self.order_error


def failing_service(cache, settings, error):
    product = make_product()
    backend = FailingOrderBackend([product], error)
    catalog = CatalogService(backend, cache, settings)
    return OrderService(backend, catalog, CartValidator(catalog)), backend, product


class TestCreateOrder:
    async def test_places_order_with_payment(self, orders, catalog, mock_db):
        hat = await catalog.get_product("prod-001")
        line = make_line(hat, quantity=2, selections=select(size="Large"))

        order = await orders.create_order(order_data([line], payment_id="pi_123"))

        assert order.subtotal == Decimal("64.00")
        assert order.delivery_total == Decimal("7.00")
        assert order.total == Decimal("71.00")
        assert order.status == OrderStatus.PAID
        [payment] = mock_db.payments.values()
        assert payment["payment_id"] == "pi_123"
        assert payment["status"] == "completed"

        items = await orders.get_order_items(order.id)
        assert items[0].product_price == Decimal("32.00")
        assert items[0].custom_selections[0].value == "Large"

    async def test_stripe_payment_stays_pending(self, orders, catalog):
        scarf = await catalog.get_product("prod-002")
        order = await orders.create_order(
            order_data([make_line(scarf)], PaymentMethod.STRIPE, payment_id="pi_9")
        )
        assert order.status == OrderStatus.PENDING

    async def test_ordered_products_are_invalidated(self, orders, catalog, cache):
        scarf = await catalog.get_product("prod-002")
        await orders.create_order(order_data([make_line(scarf, quantity=3)]))

        assert cache.peek(detail_key("prod-002")) is None
        assert (await catalog.get_product("prod-002")).stock_quantity == 5

    async def test_unavailable_product_blocks_checkout(self, orders, mock_db):
        tote = mock_db.products["prod-004"]

        with pytest.raises(CartChangedError):
            await orders.create_order(order_data([make_line(tote)]))
        assert mock_db.orders == {}

    async def test_constraint_violation_is_rejection(self, cache, settings):
        error = BackendError("orders_total_calculation_check", status_code=400, code="23514")
        service, _, product = failing_service(cache, settings, error)

        with pytest.raises(OrderRejectedError) as exc_info:
            await service.create_order(order_data([make_line(product)]))
        assert exc_info.value.detail == "orders_total_calculation_check"

    async def test_other_backend_failure_is_generic(self, cache, settings):
        service, _, product = failing_service(cache, settings, BackendUnavailableError("down"))

        with pytest.raises(CheckoutError) as exc_info:
            await service.create_order(order_data([make_line(product)]))
        assert not isinstance(exc_info.value, OrderRejectedError)
        assert exc_info.value.user_message == CheckoutError.default_message

    async def test_local_limits_reject_before_backend(self, cache, settings):
        service, backend, product = failing_service(cache, settings, AssertionError("not called"))

        with pytest.raises(OrderRejectedError):
            await service.create_order(order_data([make_line(product, quantity=101)]))
        assert backend.count("create_order") == 0


    async def test_payment_record_failure_names_the_order(self, orders, catalog, backend, mock_db, monkeypatch):
        async def payments_down(payment):
            raise BackendUnavailableError("payments down")

        monkeypatch.setattr(backend, "create_payment", payments_down)
        scarf = await catalog.get_product("prod-002")

        with pytest.raises(PaymentRecordError) as exc_info:
            await orders.create_order(order_data([make_line(scarf)], payment_id="pi_1"))

        assert exc_info.value.order_id in mock_db.orders
        assert "payment record failed" in exc_info.value.user_message

class TestBuildRequest:
    async def test_total_is_sum_of_rounded_parts(self, orders):
        product = make_product(price="0.335", delivery_charge="0.115")
        request = orders._build_request(order_data([make_line(product, quantity=3)]))

        assert request.subtotal == Decimal("1.01")
        assert request.delivery_total == Decimal("0.35")
        assert request.total == Decimal("1.36")

    async def test_items_carry_effective_price(self, orders):
        hat = make_product("hat", price="20", custom_properties={
            "properties": [{"id": "size", "type": "dropdown", "options": ["M"], "optionPrices": {"M": 28}}],
        })
        request = orders._build_request(order_data([make_line(hat, selections=select(size="M"))]))
        assert request.order_items[0].product_price == Decimal("28.00")


@pytest.mark.parametrize(
    "method, status",
    [
        (PaymentMethod.CARD, PaymentStatus.COMPLETED),
        (PaymentMethod.PAYPAL, PaymentStatus.COMPLETED),
        (PaymentMethod.STRIPE, PaymentStatus.PENDING),
    ],
)
def test_default_payment_status(method, status):
    assert default_payment_status(method) == status


async def test_user_orders(orders, catalog, backend):
    backend.set_access_token("user-7")
    scarf = await catalog.get_product("prod-002")
    placed = await orders.create_order(order_data([make_line(scarf)]))

    history = await orders.get_user_orders()
    assert [o.id for o in history] == [placed.id]
    assert await orders.get_order("missing") is None
