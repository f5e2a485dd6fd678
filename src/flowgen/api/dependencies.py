"""FastAPI dependencies.

Everything is resolved from the :class:`ServiceContainer` the lifespan
stores on ``app.state``.
"""

from fastapi import Request

from flowgen.application.services import (
    CampaignService,
    ThreadService,
    VideoGenerationService,
    VoiceCloneService,
)
from flowgen.infrastructure.config import Settings
from flowgen.infrastructure.container import ServiceContainer
from flowgen.infrastructure.sse.hub import SSEHub


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_hub(request: Request) -> SSEHub:
    return get_container(request).hub


def get_video_service(request: Request) -> VideoGenerationService:
    return get_container(request).video_service


def get_thread_service(request: Request) -> ThreadService:
    return get_container(request).thread_service


def get_clone_service(request: Request) -> VoiceCloneService:
    return get_container(request).clone_service


def get_campaign_service(request: Request) -> CampaignService:
    return get_container(request).campaign_service
