"""Shared fixtures: fake clock, in-memory storage and the mock backend over ASGI"""

from decimal import Decimal
from typing import Any, Optional

import httpx
import pytest

from storefront.core.config import Settings
from storefront.models import CartLineItem, CustomPropertySelection, Product
from storefront.mock_backend import MockDatabase, create_app
from storefront.services.backend_client import BackendClient
from storefront.services.catalog import CatalogService
from storefront.services.data_cache import DataCache
from storefront.storage.kv_store import MemoryStore

ANON_KEY = "anon-key"
ADMIN_TOKEN = "admin-token"


class FakeClock:
    """Manually advanced stand-in for time.time"""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_product(product_id: str = "p1", **fields: Any) -> Product:
    data = {
        "id": product_id,
        "name": f"Product {product_id}",
        "price": Decimal("10.00"),
        "delivery_charge": Decimal("2.00"),
        "stock_quantity": 10,
    }
    data.update(fields)
    return Product.model_validate(data)


def make_sized_product(product_id: str = "hat") -> Product:
    """Base price 20.00 with Small/Medium/Large priced 24/28/32"""
    return make_product(
        product_id,
        name="Beanie",
        price=Decimal("20.00"),
        delivery_charge=Decimal("3.50"),
        custom_properties={
            "properties": [
                {
                    "id": "size",
                    "type": "dropdown",
                    "label": "Size",
                    "options": ["Small", "Medium", "Large"],
                    "optionPrices": {"Small": 24, "Medium": 28, "Large": 32},
                },
                {"id": "colour", "type": "dropdown", "label": "Colour", "options": ["Red", "Blue"]},
            ]
        },
    )


def select(**values: Any) -> list[CustomPropertySelection]:
    return [CustomPropertySelection(property_id=k, value=v) for k, v in values.items()]


def make_line(
    product: Optional[Product] = None,
    quantity: int = 1,
    line_id: str = "line-1",
    selections: Optional[list[CustomPropertySelection]] = None,
) -> CartLineItem:
    return CartLineItem(
        id=line_id,
        product=product or make_product(),
        quantity=quantity,
        custom_selections=selections,
    )


class StubBackend:
    """Backend client double that serves canned rows and records calls"""

    def __init__(self, products: Optional[list[Product]] = None):
        self.rows = {p.id: p.model_dump(mode="json", by_alias=True) for p in products or []}
        self.calls: list[tuple] = []
        self.error: Optional[Exception] = None

    def _record(self, *call: Any) -> None:
        self.calls.append(call)
        if self.error is not None:
            raise self.error

    async def fetch_product_list(self, category=None, search=None, limit=50, offset=0):
        self._record("list", category, search, limit, offset)
        rows = [r for r in self.rows.values() if not category or r.get("category") == category]
        return rows[offset : offset + limit]

    async def fetch_product_by_id(self, product_id):
        self._record("detail", product_id)
        return self.rows.get(product_id)

    async def fetch_products_by_ids(self, product_ids):
        self._record("by_ids", tuple(product_ids))
        return [self.rows[i] for i in product_ids if i in self.rows]

    async def fetch_categories(self):
        self._record("categories")
        return sorted({r["category"] for r in self.rows.values() if r.get("category")})

    def count(self, kind: str) -> int:
        return sum(1 for call in self.calls if call[0] == kind)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        backend_url="http://test",
        backend_anon_key=ANON_KEY,
        storage_path=str(tmp_path / "storage.sqlite3"),
        mock_admin_token=ADMIN_TOKEN,
    )


@pytest.fixture
def cache(store, clock):
    return DataCache(store=store, default_ttl=300, stale_grace=300, clock=clock)


@pytest.fixture
def mock_db():
    return MockDatabase()


@pytest.fixture
async def http_client(mock_db, settings):
    app = create_app(mock_db, settings)
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


@pytest.fixture
def backend(http_client):
    return BackendClient("http://test", api_key=ANON_KEY, http_client=http_client)


@pytest.fixture
def catalog(backend, cache, settings):
    return CatalogService(backend, cache, settings)
