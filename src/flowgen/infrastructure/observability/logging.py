"""structlog configuration shared by the API process and its listeners."""

import logging
import sys

import structlog

from flowgen.infrastructure.config import Settings


def configure_logging(settings: Settings) -> None:
    """Route stdlib and structlog output through one processor chain.

    JSON lines are emitted in production (or when forced through
    ``LOGGING__JSON_LOGS``); a coloured console renderer is used otherwise.
    """
    json_logs = settings.logging.json_logs
    if json_logs is None:
        json_logs = settings.is_production

    level = logging.getLevelName(settings.logging.level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
        force=True,
    )
    # kombu and pymongo are chatty at INFO
    logging.getLogger("kombu").setLevel(max(level, logging.WARNING))
    logging.getLogger("amqp").setLevel(max(level, logging.WARNING))
    logging.getLogger("pymongo").setLevel(max(level, logging.WARNING))

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
