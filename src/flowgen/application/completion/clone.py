"""Voice clone completions (``cloning_completion``)."""

from typing import Optional

import structlog

from flowgen.domain.jobs import Notification
from flowgen.domain.repositories import UserRepository
from flowgen.infrastructure.messaging.listener import CompletionMessage

logger = structlog.get_logger(__name__)


class VoiceCloneCompletion(CompletionMessage):
    user_id: str


class VoiceCloneCompletionHandler:
    name = "voice_clone"
    message_model = VoiceCloneCompletion

    def __init__(self, users: UserRepository):
        self.users = users

    async def apply(
        self, message: VoiceCloneCompletion, correlation_id: Optional[str]
    ) -> Optional[Notification]:
        if message.succeeded:
            matched = await self.users.set_voice_cloned(message.user_id)
        else:
            matched = await self.users.set_voice_clone_failed(
                message.user_id, message.failure_reason
            )

        if not matched:
            logger.warning("No user found for voice clone", user_id=message.user_id)

        return Notification(
            identity=message.user_id,
            payload={
                "type": "voice_clone",
                "status": "ready" if message.succeeded else "failed",
                "voice_cloned": message.succeeded,
                "error": None if message.succeeded else message.failure_reason,
                "correlation_id": correlation_id,
            },
        )
