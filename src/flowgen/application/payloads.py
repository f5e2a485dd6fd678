"""Job payloads published to the external workers.

Field aliases are the keys the workers read; payloads are serialized by
alias.
"""

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class WorkerPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class VideoJob(WorkerPayload):
    """Render one video from a ready thread (``generate`` queue)."""

    user: str
    thread: str
    tts_text: str = Field(alias="ttsText")
    source: str = "video_player"


class CampaignVideoJob(WorkerPayload):
    """One campaign item; the worker answers on the campaign completion queue."""

    user_id: str
    thread: str
    tts_text: str = Field(alias="ttsText")
    campaign_id: str = Field(alias="campaignId")
    source: str = "campaign"


class TranscriptJob(WorkerPayload):
    user_id: str
    user_name: str
    flow_name: str
    video_path: str
    config_path: str


class VoiceCloneJob(WorkerPayload):
    user_id: str
    user_name: str
    audio_path: str


class ThreadJob(WorkerPayload):
    """Render a thread (``thread`` queue)."""

    user_id: str
    user_name: str
    thread_name: str
    description: str
    tts_text: str = Field(alias="ttsText")
    color: str
    smart_pause: bool = Field(default=False, alias="smartPause")
    subtitle: bool = Field(default=False, alias="subtitleValue")
    fast_progress: bool = Field(default=False, alias="fastProgress")
    correlation_id: str
    thumbnail_paths: Optional[Dict[str, str]] = None
