"""REST and RPC routes mirroring the hosted backend's API surface"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..models.product import Product, ProductInput
from .database import ConstraintViolation, MockDatabase

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rest/v1", tags=["Backend"])

CHECK_VIOLATION = "23514"
INSUFFICIENT_PRIVILEGE = "42501"

# Query parameters with meaning beyond a column filter
_RESERVED_PARAMS = {"select", "order", "limit", "offset"}


@dataclass
class Caller:
    """Who a request runs as, derived from its headers"""

    user_id: Optional[str] = None
    is_admin: bool = False


class ApiKeyDependency:
    """
    FastAPI dependency for the backend's API key and bearer token.

    The apikey header must match the configured anon key. A bearer equal to
    the admin token grants admin rights; any other bearer that isn't the anon
    key is taken as the signed-in user's id.
    """

    async def __call__(self, request: Request) -> Caller:
        expected = request.app.state.api_key
        apikey = request.headers.get("apikey")
        if expected and apikey != expected:
            raise HTTPException(status_code=401, detail="Invalid API key")

        authorization = request.headers.get("authorization", "")
        token = authorization[7:] if authorization.lower().startswith("bearer ") else None

        if token and token == request.app.state.admin_token:
            return Caller(user_id="admin", is_admin=True)
        if token and token != apikey:
            return Caller(user_id=token)
        return Caller()


require_api_key = ApiKeyDependency()


def get_db(request: Request) -> MockDatabase:
    return request.app.state.db


def _pg_error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"code": code, "message": message})


def _args(body: dict[str, Any]) -> dict[str, Any]:
    """Strip the p_ prefix procedure arguments carry"""
    return {key[2:] if key.startswith("p_") else key: value for key, value in body.items()}


def _row(product: Product) -> dict[str, Any]:
    return product.model_dump(mode="json", by_alias=True)


def _matches(value: Any, expected: str) -> bool:
    if isinstance(value, bool):
        return str(value).lower() == expected
    return value is not None and str(value) == expected


def _select(rows: list[dict], params: dict[str, str]) -> list[dict]:
    """Apply eq. filters, ordering, paging and column selection"""
    for column, condition in params.items():
        if column in _RESERVED_PARAMS:
            continue
        if not condition.startswith("eq."):
            raise HTTPException(status_code=400, detail=f"Unsupported filter: {column}={condition}")
        expected = condition[3:]
        rows = [row for row in rows if _matches(row.get(column), expected)]

    order = params.get("order")
    if order:
        column, _, direction = order.partition(".")
        rows = sorted(rows, key=lambda row: str(row.get(column) or ""), reverse=direction == "desc")

    offset = int(params.get("offset", 0))
    limit = params.get("limit")
    rows = rows[offset:] if limit is None else rows[offset : offset + int(limit)]

    columns = params.get("select", "*")
    if columns != "*":
        wanted = [c.strip() for c in columns.split(",")]
        rows = [{c: row.get(c) for c in wanted} for row in rows]
    return rows


# ==================== Product RPCs ====================

@router.post("/rpc/get_products")
async def get_products(
    body: dict = Body(default={}),
    caller: Caller = Depends(require_api_key),
    db: MockDatabase = Depends(get_db),
):
    args = _args(body)
    products = db.search_products(
        category=args.get("category"),
        search=args.get("search"),
        limit=int(args.get("limit") or 50),
        offset=int(args.get("offset") or 0),
    )
    return [_row(p) for p in products]


@router.post("/rpc/get_product_by_id")
async def get_product_by_id(
    body: dict = Body(default={}),
    caller: Caller = Depends(require_api_key),
    db: MockDatabase = Depends(get_db),
):
    product = db.get_product(_args(body).get("product_id"), include_unavailable=caller.is_admin)
    return [_row(product)] if product else []


@router.post("/rpc/get_products_by_ids")
async def get_products_by_ids(
    body: dict = Body(default={}),
    caller: Caller = Depends(require_api_key),
    db: MockDatabase = Depends(get_db),
):
    product_ids = _args(body).get("product_ids") or []
    return [_row(p) for p in db.get_products_by_ids(product_ids)]


@router.post("/rpc/create_product")
async def create_product(
    body: dict = Body(default={}),
    caller: Caller = Depends(require_api_key),
    db: MockDatabase = Depends(get_db),
):
    if not caller.is_admin:
        return _pg_error(403, INSUFFICIENT_PRIVILEGE, "Only administrators can create products")
    try:
        data = ProductInput.model_validate(_args(body))
    except ValidationError as e:
        return _pg_error(400, CHECK_VIOLATION, f"Product constraint violated: {e}")

    product = db.create_product(data)
    logger.info(f"Product created: {product.id}")
    return [_row(product)]


@router.post("/rpc/update_product")
async def update_product(
    body: dict = Body(default={}),
    caller: Caller = Depends(require_api_key),
    db: MockDatabase = Depends(get_db),
):
    if not caller.is_admin:
        return _pg_error(403, INSUFFICIENT_PRIVILEGE, "Only administrators can update products")
    args = _args(body)
    product_id = args.pop("product_id", None)
    try:
        data = ProductInput.model_validate(args)
    except ValidationError as e:
        return _pg_error(400, CHECK_VIOLATION, f"Product constraint violated: {e}")

    product = db.update_product(product_id, data)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return [_row(product)]


# ==================== Order RPCs ====================

@router.post("/rpc/create_order")
async def create_order(
    body: dict = Body(default={}),
    caller: Caller = Depends(require_api_key),
    db: MockDatabase = Depends(get_db),
):
    try:
        order_id = db.create_order(_args(body), user_id=caller.user_id)
    except ConstraintViolation as e:
        logger.warning(f"Order rejected: {e.message}")
        return _pg_error(400, CHECK_VIOLATION, e.message)

    logger.info(f"Order created: {order_id}")
    return order_id


@router.post("/rpc/create_payment")
async def create_payment(
    body: dict = Body(default={}),
    caller: Caller = Depends(require_api_key),
    db: MockDatabase = Depends(get_db),
):
    args = _args(body)
    order = db.orders.get(args.get("order_id"))
    if order is not None and not caller.is_admin and order["user_id"] != caller.user_id:
        return _pg_error(403, INSUFFICIENT_PRIVILEGE, "Order belongs to another user")
    try:
        return db.create_payment(args)
    except ConstraintViolation as e:
        return _pg_error(400, CHECK_VIOLATION, e.message)


# ==================== Views ====================

@router.get("/products_view")
async def products_view(
    request: Request,
    caller: Caller = Depends(require_api_key),
    db: MockDatabase = Depends(get_db),
):
    rows = [_row(p) for p in db.products.values() if p.is_available or caller.is_admin]
    return _select(rows, dict(request.query_params))


@router.get("/orders_view")
async def orders_view(
    request: Request,
    caller: Caller = Depends(require_api_key),
    db: MockDatabase = Depends(get_db),
):
    rows = db.visible_orders(caller.user_id, caller.is_admin)
    return _select(rows, dict(request.query_params))


@router.get("/order_items_view")
async def order_items_view(
    request: Request,
    caller: Caller = Depends(require_api_key),
    db: MockDatabase = Depends(get_db),
):
    rows = db.visible_order_items(caller.user_id, caller.is_admin)
    return _select(rows, dict(request.query_params))
