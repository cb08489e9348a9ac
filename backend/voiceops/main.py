"""FastAPI application entry point."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from voiceops.api.v1 import auth, campaigns, queue, webhooks
from voiceops.api.v1.proxy import secure_data_proxy, voice_proxy
from voiceops.config import get_settings
from voiceops.logging_config import configure_logging
from voiceops.websocket import dashboard_ws

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    logger.info(
        "app_starting",
        app_name=settings.app_name,
        voice_mock=settings.voice_use_mock,
        voice_configured=settings.voice_configured,
    )
    yield
    logger.info("app_stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Campaign call queue and masking proxies for AI voice calling",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_origin_regex=settings.cors_origin_regex,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routers
    app.include_router(auth.router, prefix="/api/v1")
    app.include_router(campaigns.router, prefix="/api/v1")
    app.include_router(queue.router, prefix="/api/v1")
    app.include_router(voice_proxy.router, prefix="/api/v1")
    app.include_router(secure_data_proxy.router, prefix="/api/v1")
    app.include_router(webhooks.router)  # No prefix - provider posts to a fixed path

    # WebSocket routers
    app.include_router(dashboard_ws.router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()
