"""
GeoProfile REST API.

FastAPI interface for dashboards and external integrations.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from geoprofile import __version__
from geoprofile.api.auth import init_auth, key_guard, require_api_key
from geoprofile.api.routes import deps, router

if TYPE_CHECKING:
    from geoprofile.core.processor import ConnectionProcessor
    from geoprofile.store.database import PolicyStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log application startup and shutdown."""
    logger.info("Starting GeoProfile API")
    yield
    logger.info("Shutting down GeoProfile API")


def create_app(
    title: str = "GeoProfile API",
    debug: bool = False,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        title: API title
        debug: Enable debug mode
        cors_origins: Allowed CORS origins

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title=title,
        description="Policy selection and profile reconciliation for MDM devices",
        version=__version__,
        debug=debug,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    origins = cors_origins or ["http://localhost:3000", "http://localhost:5173"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.error("Unhandled exception: %s", exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if debug else None,
            },
        )

    return app


def configure_services(
    app: FastAPI,
    store: PolicyStore | None = None,
    processor: ConnectionProcessor | None = None,
    api_key: str | None = None,
) -> None:
    """
    Configure application services.

    Args:
        app: FastAPI application
        store: Policy store instance
        processor: Connection processor instance
        api_key: Key required in the X-API-Key header (None disables auth)
    """
    deps.store = store
    deps.processor = processor
    init_auth(api_key)

    logger.info("API services configured")


__all__ = [
    "configure_services",
    "create_app",
    "deps",
    "init_auth",
    "key_guard",
    "lifespan",
    "require_api_key",
    "router",
]
