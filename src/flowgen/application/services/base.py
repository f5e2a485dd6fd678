"""Shared helpers for services that dispatch jobs."""

import structlog

from flowgen.domain.jobs import Completed, Outcome
from flowgen.infrastructure.messaging.listener import CompletionListener

logger = structlog.get_logger(__name__)


async def apply_reply(listener: CompletionListener, outcome: Outcome) -> None:
    """Run a reply received within the deadline through the completion path.

    Records are written the same way whether the reply came back in time or
    late. A failure here is logged; the caller still gets the worker reply.
    """
    if not isinstance(outcome, Completed) or outcome.malformed:
        return
    job = outcome.job
    try:
        await listener.process({**job.context, **outcome.reply}, job.correlation_id)
    except Exception as exc:
        logger.error(
            "Recording worker reply failed",
            queue=job.queue_name,
            correlation_id=job.correlation_id,
            error=str(exc),
            exc_info=exc,
        )
