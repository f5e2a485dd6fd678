"""User request schemas."""

from pydantic import BaseModel, Field


class VoiceCloneRequest(BaseModel):
    """Clone a voice from an audio sample already stored for the user."""

    user_id: str = Field(..., min_length=1)
    user_name: str = Field(..., min_length=1)
    audio_path: str = Field(..., min_length=1)
