from decimal import Decimal

import httpx
import pytest

from storefront.core.errors import (
    BackendError,
    BackendUnavailableError,
    NotFoundError,
    PermissionDeniedError,
)
from storefront.services.backend_client import BackendClient

from conftest import ADMIN_TOKEN, ANON_KEY


def order_payload(**overrides):
    payload = {
        "email": "ada@example.com",
        "full_name": "Ada Lovelace",
        "address": {"address": "1 Loom St", "city": "London", "postcode": "N1 1AA", "country": "GB"},
        "subtotal": "28.00",
        "delivery_total": "3.50",
        "total": "31.50",
        "payment_method": "card",
        "order_items": [
            {
                "product_id": "prod-001",
                "product_name": "Chunky Knit Beanie",
                "product_price": "28.00",
                "quantity": 1,
                "delivery_charge": "3.50",
                "custom_selections": [{"property_id": "size", "value": "Medium"}],
            }
        ],
    }
    payload.update(overrides)
    return payload


class TestProducts:
    async def test_list_newest_first_without_unavailable(self, backend):
        rows = await backend.fetch_product_list()
        ids = [row["id"] for row in rows]

        assert ids[0] == "prod-005"
        assert "prod-004" not in ids

    async def test_list_filters(self, backend):
        rows = await backend.fetch_product_list(category="Hats")
        assert [row["id"] for row in rows] == ["prod-001"]

        rows = await backend.fetch_product_list(search="scarf")
        assert [row["id"] for row in rows] == ["prod-002"]

        rows = await backend.fetch_product_list(limit=2, offset=1)
        assert [row["id"] for row in rows] == ["prod-003", "prod-002"]

    async def test_list_follows_admin_sort_order(self, backend, mock_db):
        mock_db.products["prod-001"].sort_order = 1
        mock_db.products["prod-002"].sort_order = 2

        rows = await backend.fetch_product_list()

        assert [row["id"] for row in rows] == ["prod-005", "prod-003", "prod-001", "prod-002"]
        assert rows[-1]["sort_order"] == 2

    async def test_detail_keeps_option_price_aliases(self, backend):
        row = await backend.fetch_product_by_id("prod-001")
        size = row["custom_properties"]["properties"][0]
        assert Decimal(size["optionPrices"]["Large"]) == Decimal("32")

    async def test_missing_product_is_none(self, backend):
        assert await backend.fetch_product_by_id("nope") is None

    async def test_by_ids_includes_unavailable(self, backend):
        rows = await backend.fetch_products_by_ids(["prod-004", "prod-002", "nope"])
        assert sorted(row["id"] for row in rows) == ["prod-002", "prod-004"]

    async def test_categories_are_distinct_and_available(self, backend):
        assert await backend.fetch_categories() == ["Blankets", "Hats", "Home", "Scarves"]

    async def test_product_writes_need_admin(self, backend):
        with pytest.raises(PermissionDeniedError) as exc_info:
            await backend.create_product({"name": "Mitts", "description": "Warm", "price": "9", "category": "Gloves"})
        assert exc_info.value.status_code == 403

    async def test_admin_create_and_update(self, backend, mock_db):
        backend.set_access_token(ADMIN_TOKEN)
        product = {"name": "Mitts", "description": "Warm", "price": "9.00", "category": "Gloves"}

        rows = await backend.create_product(product)
        product_id = rows[0]["id"]
        assert product_id in mock_db.products

        rows = await backend.update_product(product_id, {**product, "price": "11.00"})
        assert Decimal(rows[0]["price"]) == Decimal("11.00")

    async def test_sort_order_on_create_and_update(self, backend):
        backend.set_access_token(ADMIN_TOKEN)
        product = {"name": "Mitts", "description": "Warm", "price": "9.00", "category": "Gloves"}

        created = (await backend.create_product(product))[0]
        assert created["sort_order"] == 1
        assert (await backend.fetch_product_list())[-1]["id"] == created["id"]

        kept = (await backend.update_product(created["id"], {**product, "price": "10.00"}))[0]
        assert kept["sort_order"] == 1

        moved = (await backend.update_product(created["id"], {**product, "sort_order": 0}))[0]
        assert moved["sort_order"] == 0

    async def test_invalid_product_is_a_check_violation(self, backend):
        backend.set_access_token(ADMIN_TOKEN)
        with pytest.raises(BackendError) as exc_info:
            await backend.create_product({"name": "", "description": "x", "price": "1", "category": "c"})
        assert exc_info.value.code == "23514"


class TestOrders:
    async def test_create_and_read_back(self, backend, mock_db):
        order_id = await backend.create_order(order_payload())

        order = await backend.get_order(order_id)
        items = await backend.get_order_items(order_id)

        assert order["total"] == "31.50"
        assert order["status"] == "pending"
        assert items[0]["quantity"] == 1
        assert mock_db.products["prod-001"].stock_quantity == 11

    async def test_mismatched_total_is_rejected(self, backend):
        with pytest.raises(BackendError) as exc_info:
            await backend.create_order(order_payload(total="40.00"))

        assert exc_info.value.status_code == 400
        assert exc_info.value.code == "23514"
        assert "total" in exc_info.value.message

    async def test_quantity_limit(self, backend):
        items = order_payload()["order_items"]
        items[0]["quantity"] = 101
        with pytest.raises(BackendError) as exc_info:
            await backend.create_order(order_payload(order_items=items))
        assert exc_info.value.code == "23514"

    async def test_payment_marks_order_paid(self, backend):
        order_id = await backend.create_order(order_payload())
        payment_id = await backend.create_payment({
            "order_id": order_id,
            "payment_method": "card",
            "payment_id": "pi_123",
            "amount": "31.50",
            "status": "completed",
        })

        assert payment_id
        assert (await backend.get_order(order_id))["status"] == "paid"

    async def test_orders_are_scoped_to_their_user(self, backend):
        backend.set_access_token("user-1")
        order_id = await backend.create_order(order_payload())
        assert [o["id"] for o in await backend.get_user_orders()] == [order_id]

        backend.set_access_token("user-2")
        assert await backend.get_order(order_id) is None
        assert await backend.get_user_orders() == []


class TestTransport:
    async def test_wrong_api_key_is_permission_denied(self, http_client):
        client = BackendClient("http://test", api_key="wrong", http_client=http_client)
        with pytest.raises(PermissionDeniedError) as exc_info:
            await client.fetch_categories()
        assert exc_info.value.status_code == 401

    async def test_unknown_route_is_not_found(self, backend):
        with pytest.raises(NotFoundError):
            await backend._rpc("no_such_function")

    async def test_connection_failure_is_unavailable(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(refuse))
        client = BackendClient("http://backend", api_key=ANON_KEY, http_client=http_client)
        with pytest.raises(BackendUnavailableError):
            await client.fetch_product_list()
        await client.close()

    async def test_headers(self):
        seen = {}

        def capture(request):
            seen.update(request.headers)
            return httpx.Response(200, json=[])

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(capture))
        client = BackendClient("http://backend/", api_key=ANON_KEY, schema="shop", http_client=http_client)
        await client.fetch_product_list()
        await client.close()

        assert seen["apikey"] == ANON_KEY
        assert seen["authorization"] == f"Bearer {ANON_KEY}"
        assert seen["accept-profile"] == "shop"
        assert seen["content-profile"] == "shop"
