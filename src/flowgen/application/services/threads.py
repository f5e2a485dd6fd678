"""Thread creation and transcription."""

import os
from dataclasses import dataclass
from typing import Dict, Optional

import structlog

from flowgen.application.payloads import ThreadJob, TranscriptJob
from flowgen.application.services.base import apply_reply
from flowgen.domain.entities import ThreadRecord, ThreadStatus
from flowgen.domain.exceptions import BrokerUnavailableError, ResourceConflictError
from flowgen.domain.jobs import Outcome, new_id
from flowgen.domain.repositories import ThreadRepository
from flowgen.infrastructure.messaging.dispatcher import JobDispatcher
from flowgen.infrastructure.messaging.listener import CompletionListener

logger = structlog.get_logger(__name__)


@dataclass
class NewThread:
    user_id: str
    user_name: str
    thread_name: str
    description: str
    tts_text: str
    color: str
    smart_pause: bool = False
    subtitle: bool = False
    fast_progress: bool = False
    thumbnail_paths: Optional[Dict[str, str]] = None


class ThreadService:
    """Creates threads and requests their transcripts."""

    def __init__(
        self,
        threads: ThreadRepository,
        thread_dispatcher: JobDispatcher[ThreadJob],
        transcript_dispatcher: JobDispatcher[TranscriptJob],
        transcript_completion: CompletionListener,
        thread_completion_queue: str,
        user_data_dir: str,
    ):
        self.threads = threads
        self.thread_dispatcher = thread_dispatcher
        self.transcript_dispatcher = transcript_dispatcher
        self.transcript_completion = transcript_completion
        self.thread_completion_queue = thread_completion_queue
        self.user_data_dir = user_data_dir

    async def create_thread(self, request: NewThread) -> ThreadRecord:
        """Store a pending thread and queue its render.

        The record is written before the job is published so the completion
        can always find it by correlation id.

        Raises:
            ResourceConflictError: The user already has a thread with this name
            BrokerUnavailableError: The render job could not be published; the
                thread is marked failed
        """
        if await self.threads.get_by_name(request.thread_name, request.user_id):
            raise ResourceConflictError(
                f"Thread '{request.thread_name}' already exists",
                details={"thread_name": request.thread_name},
            )

        correlation_id = new_id()
        thread = await self.threads.create(
            ThreadRecord(
                id=None,
                user_id=request.user_id,
                thread_name=request.thread_name,
                description=request.description,
                correlation_id=correlation_id,
            )
        )

        payload = ThreadJob(
            user_id=request.user_id,
            user_name=request.user_name,
            thread_name=request.thread_name,
            description=request.description,
            tts_text=request.tts_text,
            color=request.color,
            smart_pause=request.smart_pause,
            subtitle=request.subtitle,
            fast_progress=request.fast_progress,
            correlation_id=correlation_id,
            thumbnail_paths=request.thumbnail_paths,
        )
        try:
            await self.thread_dispatcher.publish(
                payload,
                reply_to=self.thread_completion_queue,
                correlation_id=correlation_id,
            )
        except BrokerUnavailableError as exc:
            await self.threads.mark_status_by_correlation(
                correlation_id, ThreadStatus.FAILED, error=exc.message
            )
            raise

        logger.info(
            "Thread creation started",
            thread_name=request.thread_name,
            correlation_id=correlation_id,
        )
        return thread

    def flow_paths(self, user_id: str, user_name: str, flow_name: str) -> Dict[str, str]:
        """Default video and config locations for a flow."""
        flow_dir = os.path.join(self.user_data_dir, f"{user_name}_{user_id}", flow_name)
        return {
            "video_path": os.path.join(flow_dir, "video.mp4"),
            "config_path": os.path.join(flow_dir, "config.json"),
        }

    async def request_transcript(
        self,
        user_id: str,
        user_name: str,
        flow_name: str,
        video_path: Optional[str] = None,
        config_path: Optional[str] = None,
    ) -> Outcome:
        """Transcribe a flow's video, waiting up to the transcript deadline."""
        paths = self.flow_paths(user_id, user_name, flow_name)
        if video_path and config_path:
            paths = {"video_path": video_path, "config_path": config_path}

        outcome = await self.transcript_dispatcher.submit(
            TranscriptJob(
                user_id=user_id,
                user_name=user_name,
                flow_name=flow_name,
                **paths,
            ),
            context={"user_id": user_id, "flow_name": flow_name},
        )
        await apply_reply(self.transcript_completion, outcome)
        return outcome
