"""Logfire configuration and setup for the FlowGen backend.

This module handles the initialization of Pydantic Logfire tracing for the
HTTP surface and the document store.
"""

from typing import Any, Optional

import logfire
import structlog

from flowgen.infrastructure.config import Settings

logger = structlog.get_logger(__name__)


def configure_logfire(settings: Settings, app_instance: Optional[Any] = None) -> bool:
    """Configure Logfire and instrument the app when enabled.

    Args:
        settings: Application settings
        app_instance: Optional FastAPI app instance for auto-instrumentation

    Returns:
        bool: True if Logfire was configured
    """
    if not settings.logfire.enabled:
        logger.info("Logfire is disabled in configuration")
        return False

    config = {
        "service_name": settings.logfire.service_name,
        "service_version": settings.app.version,
        "environment": settings.app.environment,
        "console": None if settings.logfire.console_enabled else False,
        "send_to_logfire": "if-token-present",
    }
    if settings.logfire.token:
        config["token"] = settings.logfire.token.get_secret_value()

    try:
        logfire.configure(**config)
    except Exception as e:
        logger.error("Failed to configure Logfire", error=str(e))
        if settings.is_production:
            raise
        return False

    if app_instance is not None:
        try:
            logfire.instrument_fastapi(
                app_instance, capture_headers=settings.logfire.capture_headers
            )
        except Exception as e:
            logger.warning("Failed to instrument FastAPI", error=str(e))

    if settings.logfire.pymongo_enabled:
        try:
            logfire.instrument_pymongo()
        except Exception as e:
            logger.warning("Failed to instrument PyMongo", error=str(e))

    logger.info("Logfire configured", service_name=settings.logfire.service_name)
    return True
