# Storefront services

from . import pricing
from .backend_client import BackendClient
from .data_cache import CacheEntry, DataCache
from .catalog import CatalogService
from .cart_store import CartStore
from .cart_validator import CartValidator
from .order_service import OrderService

__all__ = [
    "pricing",
    "BackendClient",
    "CacheEntry",
    "DataCache",
    "CatalogService",
    "CartStore",
    "CartValidator",
    "OrderService",
]
