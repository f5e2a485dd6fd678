"""Video generation completions (``video_completion``)."""

from typing import Optional

import structlog
from pydantic import AliasChoices, Field

from flowgen.domain.jobs import Notification
from flowgen.domain.repositories import ApiKeyRepository, RequestRepository
from flowgen.infrastructure.messaging.listener import CompletionMessage

logger = structlog.get_logger(__name__)


class VideoCompletion(CompletionMessage):
    user_id: str = Field(validation_alias=AliasChoices("user_id", "userId", "user"))
    thread_name: str = Field(
        validation_alias=AliasChoices("thread_name", "threadName", "thread")
    )
    tts_text: str = Field(
        default="", validation_alias=AliasChoices("tts_text", "ttsText")
    )
    video_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("video_url", "videoUrl", "url")
    )
    api_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("api_key", "apiKey")
    )


class VideoCompletionHandler:
    """Records a delivered video once and charges the API key for it."""

    name = "video"
    message_model = VideoCompletion

    def __init__(self, requests: RequestRepository, api_keys: ApiKeyRepository):
        self.requests = requests
        self.api_keys = api_keys

    async def apply(
        self, message: VideoCompletion, correlation_id: Optional[str]
    ) -> Optional[Notification]:
        if not message.succeeded:
            logger.info(
                "Video generation failed",
                user_id=message.user_id,
                thread_name=message.thread_name,
                error=message.failure_reason,
            )
            return Notification(
                identity=message.user_id,
                payload={
                    "type": "video",
                    "status": "failed",
                    "thread_name": message.thread_name,
                    "tts_text": message.tts_text,
                    "error": message.failure_reason,
                    "correlation_id": correlation_id,
                },
            )

        if not correlation_id:
            logger.warning(
                "Video completion without correlation id; not recorded",
                user_id=message.user_id,
            )
            return None

        inserted = await self.requests.record(
            correlation_id,
            user_id=message.user_id,
            thread_name=message.thread_name,
            tts_text=message.tts_text,
            video_url=message.video_url,
        )
        if inserted and message.api_key:
            await self.api_keys.increment_uses(message.api_key)

        # The request feed pushes the new record to the user.
        logger.info(
            "Video request recorded",
            correlation_id=correlation_id,
            inserted=inserted,
        )
        return None
