"""
Catalog Service

Cached product and category reads. Writes go straight to the backend and
then drop or overwrite any cache entries they would otherwise leave stale.
"""

import asyncio
import logging
from typing import Any, Callable, Iterable, Optional

from pydantic import ValidationError

from ..core.config import Settings
from ..core.errors import NotFoundError, ProductDataError
from ..models.product import Product, ProductFilter, ProductInput
from .backend_client import BackendClient
from .data_cache import DataCache, Fetcher

logger = logging.getLogger(__name__)

LIST_PREFIX = "products_list:"
DETAIL_PREFIX = "product_detail:"
BY_IDS_PREFIX = "products_by_ids:"
CATEGORIES_KEY = "categories"


def detail_key(product_id: str) -> str:
    return f"{DETAIL_PREFIX}{product_id}"


class CatalogService:
    """Product reads through the data cache"""

    def __init__(self, client: BackendClient, cache: DataCache, settings: Settings):
        self.client = client
        self.cache = cache
        self.list_ttl = settings.cache_product_list_ttl
        self.category_ttl = settings.cache_category_ttl
        self.detail_ttl = settings.cache_product_detail_ttl
        self._prefetches: set[asyncio.Task] = set()

    # ==================== Reads ====================

    async def get_product_list(self, product_filter: Optional[ProductFilter] = None) -> list[Product]:
        """Products for listing pages"""
        product_filter = product_filter or ProductFilter()

        async def fetch() -> list[dict]:
            return await self.client.fetch_product_list(
                category=product_filter.category,
                search=product_filter.search,
                limit=product_filter.limit,
                offset=product_filter.offset,
            )

        return await self._read(product_filter.cache_key(), fetch, self.list_ttl, _parse_products)

    async def get_product(self, product_id: str) -> Optional[Product]:
        """Full product details, or None when the product doesn't resolve"""

        async def fetch() -> Optional[dict]:
            return await self.client.fetch_product_by_id(product_id)

        return await self._read(detail_key(product_id), fetch, self.detail_ttl, _parse_product)

    async def get_products_by_ids(self, product_ids: Iterable[str]) -> list[Product]:
        """Minimal product data for cart and summary views"""
        ids = sorted(set(product_ids))
        if not ids:
            return []

        async def fetch() -> list[dict]:
            return await self.client.fetch_products_by_ids(ids)

        key = f"{BY_IDS_PREFIX}{','.join(ids)}"
        return await self._read(key, fetch, self.detail_ttl, _parse_products)

    async def _read(self, key: str, fetch: Fetcher, ttl: float, parse: Callable[[Any], Any]) -> Any:
        """
        Cached read parsed into models.

        An entry that no longer parses (persisted by an older release, or a bad
        row) is dropped and fetched once more; a second failure raises
        ProductDataError and leaves nothing cached.
        """
        data = await self.cache.get_or_fetch(key, fetch, ttl=ttl)
        try:
            return parse(data)
        except ValidationError as e:
            logger.warning(f"Discarding unparseable cache entry {key}, refetching: {e}")

        self.cache.invalidate(key)
        data = await self.cache.get_or_fetch(key, fetch, ttl=ttl)
        try:
            return parse(data)
        except ValidationError as e:
            self.cache.invalidate(key)
            logger.error(f"Backend returned unparseable product data for {key}: {e}")
            raise ProductDataError(f"Product data for {key} could not be parsed") from e

    async def get_categories(self) -> list[str]:
        """Distinct categories, cached for a long period"""
        return await self.cache.get_or_fetch(
            CATEGORIES_KEY,
            self.client.fetch_categories,
            ttl=self.category_ttl,
        )

    def prefetch_products(self, product_filter: Optional[ProductFilter] = None) -> asyncio.Task:
        """Warm the list cache in the background"""
        task = asyncio.create_task(self.get_product_list(product_filter))
        self._prefetches.add(task)
        task.add_done_callback(self._prefetch_done)
        return task

    def _prefetch_done(self, task: asyncio.Task) -> None:
        self._prefetches.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Product prefetch failed: {task.exception()}")

    # ==================== Writes ====================

    async def create_product(self, data: ProductInput) -> Product:
        """Create a product (admin) and refresh affected cache entries"""
        row = await self.client.create_product(self._write_payload(data))
        product = _written_product(row)
        self._after_product_write(product)
        logger.info(f"Created product {product.id}")
        return product

    async def update_product(self, product_id: str, data: ProductInput) -> Product:
        """Update a product (admin) and refresh affected cache entries"""
        row = await self.client.update_product(product_id, self._write_payload(data))
        product = _written_product(row)
        self._after_product_write(product)
        logger.info(f"Updated product {product.id}")
        return product

    @staticmethod
    def _write_payload(data: ProductInput) -> dict[str, Any]:
        return data.model_dump(mode="json", by_alias=True)

    def _after_product_write(self, product: Product) -> None:
        self.cache.set(
            detail_key(product.id),
            product.model_dump(mode="json", by_alias=True),
            ttl=self.detail_ttl,
        )
        self._invalidate_listings()

    def invalidate_products(self, product_ids: Iterable[str]) -> None:
        """Forget cached state for products whose stock or price just changed"""
        for product_id in set(product_ids):
            self.cache.invalidate(detail_key(product_id))
        self._invalidate_listings()

    def _invalidate_listings(self) -> None:
        self.cache.invalidate_prefix(LIST_PREFIX)
        self.cache.invalidate_prefix(BY_IDS_PREFIX)
        self.cache.invalidate(CATEGORIES_KEY)

    def clear_cache(self) -> None:
        """Clear all cached data (both memory and persistent)"""
        self.cache.clear()

    def cache_stats(self) -> dict[str, Any]:
        return self.cache.stats()


def _single_row(result: Any) -> dict:
    """Procedures returning a table come back as a one-row list"""
    if isinstance(result, list):
        if not result:
            raise NotFoundError("Product not found", status_code=404)
        return result[0]
    return result


def _written_product(result: Any) -> Product:
    try:
        return Product.model_validate(_single_row(result))
    except ValidationError as e:
        raise ProductDataError("Saved product could not be parsed") from e


def _parse_product(row: Optional[dict]) -> Optional[Product]:
    return Product.model_validate(row) if row else None


def _parse_products(rows: Optional[list]) -> list[Product]:
    return [Product.model_validate(row) for row in rows or []]
