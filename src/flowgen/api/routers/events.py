"""Server-sent events endpoint."""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from flowgen.api.dependencies import get_app_settings, get_hub
from flowgen.infrastructure.config import Settings
from flowgen.infrastructure.sse.hub import SSEHub, event_stream

router = APIRouter()


@router.get("/subscribe")
async def subscribe(
    user_id: str = Query(..., min_length=1),
    hub: SSEHub = Depends(get_hub),
    settings: Settings = Depends(get_app_settings),
):
    """Open the user's notification stream, replacing any earlier one."""
    channel = hub.subscribe(user_id)

    async def stream():
        try:
            async for frame in event_stream(channel, settings.sse.keepalive_seconds):
                yield frame
        finally:
            hub.unsubscribe(user_id, channel)

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
