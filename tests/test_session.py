import json

import pytest

from storefront.core.errors import BackendUnavailableError, CheckoutError, PaymentRecordError
from storefront.core.session import StorefrontSession
from storefront.main import open_session
from storefront.models import CustomerInfo, OrderAddress, PaymentMethod
from storefront.services.cart_store import CartStore

from conftest import select


CUSTOMER = CustomerInfo(
    email="grace@example.com",
    full_name="Grace Hopper",
    address=OrderAddress(address="2 Harbour Rd", city="Bristol", postcode="BS1 4AA"),
)


@pytest.fixture
def session(settings, store, http_client, clock):
    return StorefrontSession(settings, store=store, http_client=http_client, clock=clock)


def seed_cart(settings, store, mock_db, *product_ids):
    cart = CartStore(store, storage_key=settings.cart_storage_key)
    for product_id in product_ids:
        cart.add_item(mock_db.products[product_id])


async def malformed_product(product_id):
    return {"id": product_id, "name": "Cable Scarf"}


async def test_start_prunes_stale_cart(session, settings, store, mock_db):
    seed_cart(settings, store, mock_db, "prod-002", "prod-003")
    mock_db.delete_product("prod-003")

    removed = await session.start()

    assert removed == 1
    assert [line.product.id for line in session.cart.lines] == ["prod-002"]
    assert len(json.loads(store.get(settings.cart_storage_key))) == 1
    assert session.started_at is not None


async def test_start_survives_unparseable_product(session, settings, store, mock_db, monkeypatch):
    seed_cart(settings, store, mock_db, "prod-002")
    monkeypatch.setattr(session.client, "fetch_product_by_id", malformed_product)

    assert await session.start() == 0
    assert [line.product.id for line in session.cart.lines] == ["prod-002"]

async def test_checkout_places_order_and_empties_cart(session, settings, store, mock_db):
    await session.start()
    hat = await session.catalog.get_product("prod-001")
    session.cart.add_item(hat, 1, select(size="Small"))

    order = await session.checkout(CUSTOMER, PaymentMethod.PAYPAL, payment_id="PAY-1")

    assert str(order.total) == "27.50"
    assert session.cart.lines == []
    assert store.get(settings.cart_storage_key) is None
    assert order.id in mock_db.orders


async def test_checkout_with_empty_cart(session):
    await session.start()
    with pytest.raises(CheckoutError) as exc_info:
        await session.checkout(CUSTOMER, PaymentMethod.CARD)
    assert exc_info.value.user_message == "Your cart is empty."


async def test_failed_checkout_keeps_cart(session, mock_db):
    await session.start()
    session.cart.add_item(mock_db.products["prod-002"])
    mock_db.set_availability("prod-002", False)

    with pytest.raises(CheckoutError):
        await session.checkout(CUSTOMER, PaymentMethod.CARD)
    assert len(session.cart.lines) == 1


async def test_checkout_with_unparseable_product(session, mock_db, monkeypatch):
    await session.start()
    session.cart.add_item(mock_db.products["prod-002"])
    monkeypatch.setattr(session.client, "fetch_product_by_id", malformed_product)

    with pytest.raises(CheckoutError) as exc_info:
        await session.checkout(CUSTOMER, PaymentMethod.CARD)

    assert exc_info.value.user_message == "We couldn't confirm the items in your cart. Please try again."
    assert len(session.cart.lines) == 1
    assert mock_db.orders == {}


async def test_failed_payment_record_still_empties_cart(session, mock_db, monkeypatch):
    await session.start()
    session.cart.add_item(mock_db.products["prod-002"])

    async def payments_down(payment):
        raise BackendUnavailableError("payments down")

    monkeypatch.setattr(session.client, "create_payment", payments_down)

    with pytest.raises(PaymentRecordError) as exc_info:
        await session.checkout(CUSTOMER, PaymentMethod.CARD, payment_id="pi_1")

    assert exc_info.value.order_id in mock_db.orders
    assert session.cart.lines == []

async def test_logout_clears_cache(session, store):
    await session.start()
    await session.catalog.get_categories()
    session.sign_in("user-1")

    await session.logout()

    assert session.cache.stats()["size"] == 0
    assert store.keys(session.settings.cache_key_prefix) == []


async def test_open_session_lifecycle(settings, store, http_client):
    async with open_session(settings, store=store, http_client=http_client) as session:
        assert session.started_at is not None
        assert await session.catalog.get_categories()
