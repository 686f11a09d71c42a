"""
FastAPI Server Module

Main API application with lifecycle events, the AI-bot beacon middleware and
route registration.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request

from api.routes import pixel
from core.config import Config, get_config
from core.logger import get_logger, setup_logging
from services.dispatcher import BeaconDispatcher

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown."""
    config: Config = app.state.config

    setup_logging(
        level=config.logging.level,
        log_format=config.logging.format,
        log_file=config.logging.file,
        max_size_mb=config.logging.max_size_mb,
        backup_count=config.logging.backup_count,
        console_output=config.logging.console_output,
    )

    logger.info("Starting BILDIT pixel API server", track_bots=config.api.track_bots)

    yield

    await app.state.beacon_dispatcher.drain()
    logger.info("API server shutdown complete")


def create_app(
    config: Optional[Config] = None,
    dispatcher: Optional[BeaconDispatcher] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = config or get_config()

    app = FastAPI(
        title="BILDIT AI Pixel API",
        description="AI crawler beaconing and pixel embed API",
        version="1.0.0",
        docs_url="/docs" if config.api.debug else None,
        redoc_url="/redoc" if config.api.debug else None,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.beacon_dispatcher = dispatcher or BeaconDispatcher(config)

    @app.middleware("http")
    async def ai_bot_beacon(request: Request, call_next):
        """Fire the server-side pixel for AI crawler requests without delaying the response."""
        if config.api.track_bots:
            app.state.beacon_dispatcher.fire_and_forget(request)
        return await call_next(request)

    app.include_router(pixel.router, prefix="/pixel", tags=["Pixel"])

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": "bildit-pixel-api"}

    return app
