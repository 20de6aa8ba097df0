"""
Backend API Client

HTTP client for the managed database's REST layer. Reads go through SQL
views and stored procedures exposed under /rest/v1; authorization is applied
server-side by row-level policies keyed on the bearer token, so a refused
call only ever surfaces here as an opaque PermissionDeniedError.
"""

import json
import logging
from typing import Any, Optional

import httpx

from ..core.errors import (
    BackendError,
    BackendUnavailableError,
    NotFoundError,
    PermissionDeniedError,
)

logger = logging.getLogger(__name__)


class BackendClient:
    """
    Async client for the storefront backend.

    Returns raw JSON rows; parsing into models happens in the services that
    own caching, so cached payloads stay JSON-serializable.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        access_token: Optional[str] = None,
        schema: str = "storefront_api",
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize backend client.

        Args:
            base_url: Backend root URL (without /rest/v1)
            api_key: Public anon key sent with every request
            access_token: Signed-in user's JWT; falls back to the anon key
            schema: Database schema exposing the API views and procedures
            timeout: HTTP timeout in seconds
            http_client: Preconfigured client (tests pass an ASGI transport)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.schema = schema
        self._access_token = access_token
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

        if not api_key:
            logger.warning("No backend API key configured - requests will be anonymous")

    async def close(self) -> None:
        """Close HTTP client"""
        await self._http_client.aclose()

    def set_access_token(self, token: Optional[str]) -> None:
        """Use a signed-in user's token for subsequent requests"""
        self._access_token = token

    def _generate_headers(self, write: bool = False) -> dict[str, str]:
        """Generate API key, bearer and schema headers"""
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Accept-Profile": self.schema,
        }
        if write:
            headers["Content-Profile"] = self.schema

        if self.api_key:
            headers["apikey"] = self.api_key

        token = self._access_token or self.api_key
        if token:
            headers["Authorization"] = f"Bearer {token}"

        return headers

    async def _request(
        self,
        method: str,
        path: str,
        body: Optional[dict] = None,
        params: Optional[dict[str, str]] = None,
    ) -> Any:
        """Make an HTTP request and map failures onto storefront errors"""
        url = f"{self.base_url}/rest/v1{path}"
        body_str = json.dumps(body, default=str) if body is not None else None

        try:
            response = await self._http_client.request(
                method=method,
                url=url,
                headers=self._generate_headers(write=method != "GET"),
                params=params,
                content=body_str,
            )
        except httpx.HTTPError as e:
            logger.error(f"Request to {method} {path} failed: {e}")
            raise BackendUnavailableError(f"Backend unavailable: {e}") from e

        if response.status_code >= 400:
            logger.error(f"Request failed: {response.status_code} - {response.text}")
            raise self._error_for(response)

        if not response.content:
            return None
        return response.json()

    @staticmethod
    def _error_for(response: httpx.Response) -> BackendError:
        """Build the exception matching an error response"""
        code = None
        message = response.text or response.reason_phrase
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            code = payload.get("code")
            message = payload.get("message") or payload.get("detail") or message

        status = response.status_code
        if status in (401, 403):
            return PermissionDeniedError(message, status_code=status, code=code)
        if status == 404:
            return NotFoundError(message, status_code=status, code=code)
        return BackendError(message, status_code=status, code=code)

    async def _rpc(self, function: str, args: Optional[dict] = None) -> Any:
        """Call a stored procedure"""
        return await self._request("POST", f"/rpc/{function}", body=args or {})

    # ==================== Product APIs ====================

    async def fetch_product_list(
        self,
        category: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict]:
        """List available products, newest first"""
        rows = await self._rpc(
            "get_products",
            {
                "p_category": category,
                "p_search": search,
                "p_limit": limit,
                "p_offset": offset,
            },
        )
        return rows or []

    async def fetch_product_by_id(self, product_id: str) -> Optional[dict]:
        """Get product details, or None when it doesn't resolve"""
        rows = await self._rpc("get_product_by_id", {"p_product_id": product_id})
        if not rows:
            return None
        return rows[0]

    async def fetch_products_by_ids(self, product_ids: list[str]) -> list[dict]:
        """Get several products at once"""
        if not product_ids:
            return []
        rows = await self._rpc("get_products_by_ids", {"p_product_ids": product_ids})
        return rows or []

    async def fetch_categories(self) -> list[str]:
        """Distinct categories of available products"""
        rows = await self._request(
            "GET",
            "/products_view",
            params={"select": "category", "is_available": "eq.true"},
        )
        categories = {row.get("category") for row in rows or []}
        return sorted(c for c in categories if c)

    async def create_product(self, product: dict) -> dict:
        """Create a product (admin only)"""
        args = {f"p_{key}": value for key, value in product.items()}
        return await self._rpc("create_product", args)

    async def update_product(self, product_id: str, product: dict) -> dict:
        """Update a product (admin only)"""
        args = {f"p_{key}": value for key, value in product.items()}
        args["p_product_id"] = product_id
        return await self._rpc("update_product", args)

    # ==================== Order APIs ====================

    async def create_order(self, order: dict) -> str:
        """
        Create an order with its items.

        The procedure re-checks amounts (total == subtotal + delivery) and
        field limits, answering violations with a 400 and code 23514.
        """
        args = {f"p_{key}": value for key, value in order.items()}
        order_id = await self._rpc("create_order", args)
        return str(order_id)

    async def create_payment(self, payment: dict) -> str:
        """Record a payment against an order"""
        args = {f"p_{key}": value for key, value in payment.items()}
        payment_id = await self._rpc("create_payment", args)
        return str(payment_id)

    async def get_order(self, order_id: str) -> Optional[dict]:
        """Get order by ID"""
        rows = await self._request(
            "GET",
            "/orders_view",
            params={"select": "*", "id": f"eq.{order_id}"},
        )
        if not rows:
            return None
        return rows[0]

    async def get_order_items(self, order_id: str) -> list[dict]:
        """Get the items of an order"""
        rows = await self._request(
            "GET",
            "/order_items_view",
            params={"select": "*", "order_id": f"eq.{order_id}"},
        )
        return rows or []

    async def get_user_orders(self, limit: int = 50) -> list[dict]:
        """Orders visible to the current user, newest first"""
        rows = await self._request(
            "GET",
            "/orders_view",
            params={"select": "*", "order": "created_at.desc", "limit": str(limit)},
        )
        return rows or []
