from contextlib import asynccontextmanager
import logging

import punq
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from stream_relay.api.router import api_router
from stream_relay.core.logging import configure_logging
from stream_relay.core.settings import Settings, get_settings
from stream_relay.dependency_injection import build_container
from stream_relay.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, container: punq.Container | None = None) -> FastAPI:
    """Build the relay application.

    Run with ``uvicorn stream_relay.main:create_app --factory``. Tests pass a
    prebuilt container so no provider credentials or config files are needed.
    """

    settings = settings or get_settings()
    configure_logging(settings.effective_log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("starting stream relay", extra={"app_env": settings.app_env})
        app.state.settings = settings
        app.state.container = container or build_container(settings)
        registry: ProviderRegistry = app.state.container.resolve(ProviderRegistry)
        logger.info("provider registry initialized", extra={"aliases": [alias.alias for alias in registry.aliases]})
        try:
            yield
        finally:
            await registry.aclose()
            logger.info("stream relay shutdown complete")

    app = FastAPI(
        title="Stream Relay",
        version="0.1.0",
        docs_url="/docs" if settings.enable_swagger else None,
        redoc_url="/redoc" if settings.enable_swagger else None,
        openapi_url="/openapi.json" if settings.enable_swagger else None,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-Id"],
        expose_headers=["X-Request-Id"],
    )
    app.include_router(api_router)
    return app
