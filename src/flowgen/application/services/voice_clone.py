"""Voice cloning."""

from flowgen.application.payloads import VoiceCloneJob
from flowgen.application.services.base import apply_reply
from flowgen.domain.jobs import Outcome
from flowgen.infrastructure.messaging.dispatcher import JobDispatcher
from flowgen.infrastructure.messaging.listener import CompletionListener


class VoiceCloneService:
    def __init__(
        self,
        dispatcher: JobDispatcher[VoiceCloneJob],
        completion: CompletionListener,
    ):
        self.dispatcher = dispatcher
        self.completion = completion

    async def clone(self, user_id: str, user_name: str, audio_path: str) -> Outcome:
        """Clone a user's voice from an uploaded sample."""
        outcome = await self.dispatcher.submit(
            VoiceCloneJob(user_id=user_id, user_name=user_name, audio_path=audio_path),
            context={"user_id": user_id},
        )
        await apply_reply(self.completion, outcome)
        return outcome
