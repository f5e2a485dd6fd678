"""User endpoints."""

from fastapi import APIRouter, Depends

from flowgen.api.dependencies import get_clone_service
from flowgen.api.responses import outcome_response
from flowgen.api.schemas.users import VoiceCloneRequest
from flowgen.application.services import VoiceCloneService

router = APIRouter()


@router.post("/voice-clone")
async def clone_voice(
    request: VoiceCloneRequest,
    service: VoiceCloneService = Depends(get_clone_service),
):
    outcome = await service.clone(request.user_id, request.user_name, request.audio_path)
    return outcome_response(outcome, "Voice cloning started. This may take some time.")
