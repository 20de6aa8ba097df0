"""
Storefront entry point

Configures logging and hands out sessions with a managed lifecycle.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from dotenv import load_dotenv

from .core.config import Settings, get_settings
from .core.session import StorefrontSession

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Configure root logging from settings"""
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@asynccontextmanager
async def open_session(settings: Optional[Settings] = None, **session_kwargs) -> AsyncIterator[StorefrontSession]:
    """Session lifespan: start on enter, close on exit"""
    load_dotenv()
    settings = settings or get_settings()
    configure_logging(settings)

    logger.info(f"{settings.app_name} starting up...")
    logger.info(f"Backend URL: {settings.backend_url}")
    logger.info(f"Backend credentials configured: {settings.backend_configured}")

    session = StorefrontSession(settings, **session_kwargs)
    await session.start()
    try:
        yield session
    finally:
        logger.info(f"{settings.app_name} shutting down...")
        await session.close()
