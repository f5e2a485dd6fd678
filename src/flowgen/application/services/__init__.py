"""Application services."""

from flowgen.application.services.campaigns import CampaignService, NewCampaign
from flowgen.application.services.threads import NewThread, ThreadService
from flowgen.application.services.video_generation import VideoGenerationService
from flowgen.application.services.voice_clone import VoiceCloneService

__all__ = [
    "CampaignService",
    "NewCampaign",
    "NewThread",
    "ThreadService",
    "VideoGenerationService",
    "VoiceCloneService",
]
