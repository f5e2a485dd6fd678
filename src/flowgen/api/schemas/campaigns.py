"""Campaign request and response schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CampaignCreateRequest(BaseModel):
    campaign_name: str = Field(..., min_length=1)
    campaign_description: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    thread_name: str = Field(..., min_length=1)
    tts_text_list: List[str] = Field(..., min_length=1)
    apikey: str = Field(..., min_length=1)


class CampaignItemResponse(BaseModel):
    text: str
    status: str
    video_url: str = ""
    error: Optional[str] = None


class CampaignResponse(BaseModel):
    """Campaign response model."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    campaign_name: str
    campaign_description: str
    user_id: str
    used_thread: str
    tts_text_list: List[CampaignItemResponse]
    status: str
    created_at: Optional[datetime] = None
    message: str = "Campaign created and processing started"
