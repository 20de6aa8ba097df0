"""
Mock Storefront Backend

A local stand-in for the hosted database's REST layer, serving the same
views and procedures the storefront client calls. Enforces the API key,
admin-only product writes and the order table's amount and limit checks.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..core.config import Settings, get_settings
from .database import MockDatabase
from .routes import router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("Mock backend starting up...")
    logger.info(f"Seeded with {len(app.state.db.products)} products")
    yield
    logger.info("Mock backend shutting down...")


def create_app(
    database: Optional[MockDatabase] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Build the app around a database (a freshly seeded one by default)"""
    settings = settings or get_settings()

    app = FastAPI(
        title="Mock Storefront Backend",
        description="Local REST and RPC endpoints for storefront development and tests",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.db = database if database is not None else MockDatabase()
    app.state.api_key = settings.backend_anon_key
    app.state.admin_token = settings.mock_admin_token

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "service": "mock-backend"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    settings = get_settings()
    uvicorn.run(
        "storefront.mock_backend.main:app",
        host=settings.mock_backend_host,
        port=settings.mock_backend_port,
    )
