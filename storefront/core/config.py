"""Storefront Configuration"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment"""

    model_config = SettingsConfigDict(
        env_prefix="STOREFRONT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Storefront"
    debug: bool = False
    log_level: str = "INFO"

    # Backend collaborator
    backend_url: str = "http://localhost:54321"
    backend_anon_key: Optional[str] = None
    backend_schema: str = "storefront_api"
    request_timeout: float = 30.0

    # Durable client-side storage
    storage_path: str = "~/.storefront/storage.sqlite3"
    cart_storage_key: str = "storefront-cart"
    cache_key_prefix: str = "storefront-cache:"

    # Cache TTLs (seconds)
    cache_default_ttl: float = 300.0
    cache_product_list_ttl: float = 600.0
    cache_category_ttl: float = 1800.0
    cache_product_detail_ttl: float = 300.0
    cache_stale_grace: float = 300.0

    # Tolerance when comparing client and server computed amounts
    total_tolerance: Decimal = Decimal("0.01")

    # Mock backend
    mock_backend_host: str = "127.0.0.1"
    mock_backend_port: int = 54321
    mock_admin_token: str = "admin-token"

    @property
    def resolved_storage_path(self) -> Path:
        """Storage path with the user's home directory expanded"""
        return Path(self.storage_path).expanduser()

    @property
    def backend_configured(self) -> bool:
        """Check if backend credentials are configured"""
        return bool(self.backend_url and self.backend_anon_key)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
