"""Transcript completions (``transcript_completion``)."""

from typing import Any, Optional

import structlog
from pydantic import AliasChoices, Field

from flowgen.domain.jobs import Notification
from flowgen.domain.repositories import ThreadRepository
from flowgen.infrastructure.messaging.listener import CompletionMessage

logger = structlog.get_logger(__name__)


class TranscriptCompletion(CompletionMessage):
    user_id: str
    flow_name: str = Field(
        validation_alias=AliasChoices("flow_name", "thread_name", "threadName")
    )
    stt_names: Optional[Any] = None


class TranscriptCompletionHandler:
    name = "transcript"
    message_model = TranscriptCompletion

    def __init__(self, threads: ThreadRepository):
        self.threads = threads

    async def apply(
        self, message: TranscriptCompletion, correlation_id: Optional[str]
    ) -> Optional[Notification]:
        if message.succeeded:
            matched = await self.threads.set_transcript(
                message.user_id, message.flow_name, message.stt_names
            )
            status, error = "ready", None
        else:
            matched = await self.threads.set_transcript_failed(
                message.user_id, message.flow_name, message.failure_reason
            )
            status, error = "failed", message.failure_reason

        if not matched:
            logger.warning(
                "No thread found for transcript",
                user_id=message.user_id,
                flow_name=message.flow_name,
            )

        return Notification(
            identity=message.user_id,
            payload={
                "type": "transcript",
                "status": status,
                "thread_name": message.flow_name,
                "error": error,
                "correlation_id": correlation_id,
            },
        )
