"""Video generation request schemas."""

from pydantic import BaseModel, ConfigDict, Field


class VideoGenerationRequest(BaseModel):
    """Generate a video from a thread."""

    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field(..., alias="apiKey", min_length=1)
    thread_name: str = Field(..., alias="threadName", min_length=1)
    tts_text: str = Field(..., alias="ttsText", min_length=1)
