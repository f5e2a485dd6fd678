"""Thread endpoints."""

from fastapi import APIRouter, Depends, status

from flowgen.api.dependencies import get_thread_service
from flowgen.api.responses import outcome_response
from flowgen.api.schemas.threads import (
    ThreadCreateRequest,
    ThreadCreateResponse,
    TranscriptRequest,
)
from flowgen.application.services import NewThread, ThreadService

router = APIRouter()


@router.post(
    "", response_model=ThreadCreateResponse, status_code=status.HTTP_201_CREATED
)
async def create_thread(
    request: ThreadCreateRequest,
    service: ThreadService = Depends(get_thread_service),
) -> ThreadCreateResponse:
    """Create a thread; it stays pending until the render completes."""
    thread = await service.create_thread(
        NewThread(**request.model_dump())
    )
    return ThreadCreateResponse(
        thread_id=str(thread.id),
        correlation_id=thread.correlation_id,
        status=thread.status.value,
    )


@router.post("/transcript")
async def request_transcript(
    request: TranscriptRequest,
    service: ThreadService = Depends(get_thread_service),
):
    outcome = await service.request_transcript(
        request.user_id,
        request.user_name,
        request.flow_name,
        video_path=request.video_path,
        config_path=request.config_path,
    )
    return outcome_response(outcome, "Transcription started. This may take some time.")
