"""Main FastAPI application."""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flowgen.api.exceptions import setup_exception_handlers
from flowgen.api.middleware.logging import LoggingMiddleware
from flowgen.api.routers import campaigns, events, health, threads, users, videos
from flowgen.infrastructure.config import Settings, get_settings
from flowgen.infrastructure.container import ServiceContainer
from flowgen.infrastructure.observability.logfire_setup import configure_logfire
from flowgen.infrastructure.observability.logging import configure_logging

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the service container on startup and close it on shutdown."""
    settings: Settings = app.state.settings
    if getattr(app.state, "container", None) is None:
        app.state.container = ServiceContainer.from_settings(settings)

    container: ServiceContainer = app.state.container
    await container.start()
    logger.info(
        "Application started",
        environment=settings.app.environment,
        version=settings.app.version,
    )
    try:
        yield
    finally:
        await container.close()
        logger.info("Application stopped")


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    """Create FastAPI application.

    Args:
        settings: Settings to use instead of the environment
        container: Pre-built services (tests); built in the lifespan otherwise
    """
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app.name,
        description="Media generation backend with queued workers and live notifications",
        version=settings.app.version,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=settings.api.cors_allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)

    setup_exception_handlers(app)

    prefix = settings.api.prefix
    app.include_router(health.router, tags=["health"])
    app.include_router(videos.router, prefix=f"{prefix}/videos", tags=["videos"])
    app.include_router(threads.router, prefix=f"{prefix}/threads", tags=["threads"])
    app.include_router(users.router, prefix=f"{prefix}/users", tags=["users"])
    app.include_router(campaigns.router, prefix=f"{prefix}/campaigns", tags=["campaigns"])
    app.include_router(events.router, prefix=f"{prefix}/events", tags=["events"])

    configure_logfire(settings, app)
    return app
