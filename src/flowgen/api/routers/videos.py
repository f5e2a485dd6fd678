"""Video generation endpoint."""

from fastapi import APIRouter, Depends

from flowgen.api.dependencies import get_video_service
from flowgen.api.responses import outcome_response
from flowgen.api.schemas.videos import VideoGenerationRequest
from flowgen.application.services import VideoGenerationService

router = APIRouter()


@router.post("")
async def generate_video(
    request: VideoGenerationRequest,
    service: VideoGenerationService = Depends(get_video_service),
):
    """Generate a video; answers 202 if the worker is still rendering."""
    outcome = await service.generate(
        request.api_key, request.thread_name, request.tts_text
    )
    return outcome_response(
        outcome, "Video generation started. This may take some time."
    )
