"""Video generation from an API key and a ready thread."""

import structlog

from flowgen.application.payloads import VideoJob
from flowgen.application.services.base import apply_reply
from flowgen.domain.entities import ThreadStatus
from flowgen.domain.exceptions import AccessDeniedError, JobValidationError
from flowgen.domain.jobs import Outcome
from flowgen.domain.repositories import ApiKeyRepository, ThreadRepository
from flowgen.infrastructure.messaging.dispatcher import JobDispatcher
from flowgen.infrastructure.messaging.listener import CompletionListener

logger = structlog.get_logger(__name__)


class VideoGenerationService:
    """Service for rendering a video on the ``generate`` queue."""

    def __init__(
        self,
        api_keys: ApiKeyRepository,
        threads: ThreadRepository,
        dispatcher: JobDispatcher[VideoJob],
        completion: CompletionListener,
    ):
        """Initialize with dependencies."""
        self.api_keys = api_keys
        self.threads = threads
        self.dispatcher = dispatcher
        self.completion = completion

    async def generate(self, api_key: str, thread_name: str, tts_text: str) -> Outcome:
        """Submit a video job and wait for it up to the configured deadline.

        Args:
            api_key: Caller's API key
            thread_name: Name of a thread owned by the key's user
            tts_text: Text to speak in the video

        Returns:
            Completed with the worker reply, or Processing past the deadline

        Raises:
            JobValidationError: Unknown key or thread, or thread still rendering
            AccessDeniedError: The thread belongs to another user
            BrokerUnavailableError: The job could not be dispatched
        """
        key = await self.api_keys.get_by_key(api_key)
        if key is None:
            raise JobValidationError("Invalid apiKey")

        thread = await self.threads.get_by_name(thread_name, key.user_id)
        if thread is None:
            # Names are unique per user only; another user's match means denied
            other = await self.threads.get_by_name(thread_name)
            if other is None:
                raise JobValidationError("Invalid threadName")
            logger.warning(
                "Access denied to thread",
                thread_name=thread_name,
                requested_by=key.user_id,
                owner=other.user_id,
            )
            raise AccessDeniedError("You do not have access to this thread")

        if thread.status == ThreadStatus.PENDING:
            raise JobValidationError("Thread is still pending")

        outcome = await self.dispatcher.submit(
            VideoJob(user=key.user_id, thread=str(thread.id), tts_text=tts_text),
            context={
                "user_id": key.user_id,
                "thread_name": thread_name,
                "tts_text": tts_text,
                "api_key": api_key,
            },
        )
        await apply_reply(self.completion, outcome)
        return outcome
