"""Thread request and response schemas."""

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ThreadCreateRequest(BaseModel):
    """Create a thread. Thumbnails are referenced by path, not uploaded."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., min_length=1)
    user_name: str = Field(..., min_length=1)
    thread_name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    tts_text: str = Field(..., alias="ttsText", min_length=1)
    color: str = Field(..., min_length=1)
    smart_pause: bool = False
    subtitle: bool = False
    fast_progress: bool = False
    thumbnail_paths: Optional[Dict[str, str]] = None


class ThreadCreateResponse(BaseModel):
    message: str = "Thread creation started"
    thread_id: str
    correlation_id: str
    status: str = "pending"


class TranscriptRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    user_name: str = Field(..., min_length=1)
    flow_name: str = Field(..., min_length=1)
    video_path: Optional[str] = None
    config_path: Optional[str] = None
