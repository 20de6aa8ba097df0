"""Storefront session: one explicitly constructed set of collaborators"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import httpx

from .config import Settings, get_settings
from .errors import CheckoutError, PaymentRecordError
from ..models.checkout import CreateOrderData, CustomerInfo, Order, PaymentMethod
from ..storage.kv_store import KeyValueStore, SqliteStore
from ..services.backend_client import BackendClient
from ..services.cart_store import CartStore
from ..services.cart_validator import CartValidator
from ..services.catalog import CatalogService
from ..services.data_cache import DataCache
from ..services.order_service import OrderService

logger = logging.getLogger(__name__)


class StorefrontSession:
    """
    Builds the cache, backend client, catalog, cart and order services once
    per session and tears them down explicitly.

    Usage:
        async with StorefrontSession(settings) as session:
            products = await session.catalog.get_product_list()
            session.cart.add_item(products[0], 2)
            order = await session.checkout(customer, PaymentMethod.CARD, "pi_123")
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[KeyValueStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or get_settings()
        self.store = store if store is not None else SqliteStore(self.settings.resolved_storage_path)
        self.cache = DataCache(
            store=self.store,
            default_ttl=self.settings.cache_default_ttl,
            stale_grace=self.settings.cache_stale_grace,
            key_prefix=self.settings.cache_key_prefix,
            clock=clock,
        )
        self.client = BackendClient(
            base_url=self.settings.backend_url,
            api_key=self.settings.backend_anon_key,
            schema=self.settings.backend_schema,
            timeout=self.settings.request_timeout,
            http_client=http_client,
        )
        self.catalog = CatalogService(self.client, self.cache, self.settings)
        self.validator = CartValidator(self.catalog)
        self.cart = CartStore(self.store, storage_key=self.settings.cart_storage_key)
        self.orders = OrderService(
            self.client,
            self.catalog,
            self.validator,
            tolerance=self.settings.total_tolerance,
        )
        self.started_at: Optional[datetime] = None

    async def __aenter__(self) -> "StorefrontSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def start(self) -> int:
        """Restore the cart and prune lines that no longer validate; never raises"""
        self.started_at = datetime.now(timezone.utc)
        self.cart.load()
        removed = await self.cart.cleanup(self.validator)
        logger.info(f"Session started with {len(self.cart.lines)} cart lines ({removed} pruned)")
        return removed

    def sign_in(self, access_token: str) -> None:
        self.client.set_access_token(access_token)

    async def checkout(
        self,
        customer: CustomerInfo,
        payment_method: PaymentMethod,
        payment_id: Optional[str] = None,
        paypal_details: Optional[dict] = None,
        stripe_details: Optional[dict] = None,
    ) -> Order:
        """Place an order for the current cart and empty it once the order exists"""
        if not self.cart.lines:
            raise CheckoutError("Your cart is empty.")

        data = CreateOrderData(
            **customer.model_dump(),
            lines=self.cart.lines,
            payment_method=payment_method,
            payment_id=payment_id,
            paypal_details=paypal_details,
            stripe_details=stripe_details,
        )
        try:
            order = await self.orders.create_order(data)
        except PaymentRecordError as e:
            # The order exists; a retry from this cart would place it twice
            logger.error(f"Order {e.order_id} placed without a payment record, clearing cart")
            self.cart.clear_cart()
            raise
        self.cart.clear_cart()
        return order

    async def logout(self) -> None:
        """Drop cached data and the user's token"""
        self.cache.clear()
        self.client.set_access_token(None)
        logger.info("Session logged out, cache cleared")

    async def close(self) -> None:
        """Let background refreshes settle and close the HTTP client"""
        await self.cache.wait_for_background()
        await self.client.close()
        logger.info("Session closed")
