"""Thread render completions (``thread_completion``)."""

from typing import Optional

import structlog

from flowgen.domain.entities import ThreadStatus
from flowgen.domain.jobs import Notification
from flowgen.domain.repositories import ThreadRepository
from flowgen.infrastructure.messaging.listener import CompletionMessage

logger = structlog.get_logger(__name__)


class ThreadCompletion(CompletionMessage):
    # Workers may echo the id in the body as well as in the properties.
    correlation_id: Optional[str] = None


class ThreadCompletionHandler:
    """Marks the thread created under a correlation id ready or failed."""

    name = "thread"
    message_model = ThreadCompletion

    def __init__(self, threads: ThreadRepository):
        self.threads = threads

    async def apply(
        self, message: ThreadCompletion, correlation_id: Optional[str]
    ) -> Optional[Notification]:
        correlation_id = correlation_id or message.correlation_id
        if not correlation_id:
            logger.warning("Thread completion without correlation id dropped")
            return None

        if message.succeeded:
            thread = await self.threads.mark_status_by_correlation(
                correlation_id, ThreadStatus.READY
            )
        else:
            thread = await self.threads.mark_status_by_correlation(
                correlation_id, ThreadStatus.FAILED, error=message.failure_reason
            )

        if thread is None:
            logger.warning("No thread found", correlation_id=correlation_id)
            return None

        logger.info(
            "Thread status updated",
            correlation_id=correlation_id,
            thread_name=thread.thread_name,
            status=thread.status.value,
        )
        return Notification(
            identity=thread.user_id,
            payload={
                "type": "thread",
                "status": thread.status.value,
                "thread_id": str(thread.id),
                "thread_name": thread.thread_name,
                "error": None if message.succeeded else message.failure_reason,
                "correlation_id": correlation_id,
            },
        )
