"""
Commodity Oracle API - FastAPI application
"""
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from commodity_oracle.api import ROUTERS
from commodity_oracle.api.errors import register_exception_handlers
from commodity_oracle.config import Settings, get_settings
from commodity_oracle.services.container import ServiceContainer, build_services
from commodity_oracle.utils.logging import setup_logging

logger = structlog.get_logger()


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[ServiceContainer] = None,
) -> FastAPI:
    """
    Build the application.

    When ``services`` is given it is used as-is and left open on shutdown;
    otherwise services are built from settings at startup and closed after.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Commodity Oracle API", environment=settings.environment)

        owned = services is None
        container = build_services(settings) if owned else services
        app.state.services = container

        if owned and container.db is not None:
            try:
                await container.db.init_models()
                logger.info("Database connection established")
            except Exception as e:
                # Ledger reads fall back and writes answer 503 until the database is back
                logger.error("Database initialization error", error=str(e))

        yield

        if owned:
            await container.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        description="Commodity price oracle, predictions, staking ledger and allowance checks",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    for router in ROUTERS:
        app.include_router(router)

    @app.get("/")
    async def root():
        return {
            "name": settings.app_name,
            "version": settings.version,
            "docs": "/docs",
        }

    return app


def get_app() -> FastAPI:
    """Factory for ``uvicorn --factory``."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    return create_app(settings)
