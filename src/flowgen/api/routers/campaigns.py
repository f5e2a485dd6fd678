"""Campaign endpoints."""

from fastapi import APIRouter, Depends, status

from flowgen.api.dependencies import get_campaign_service
from flowgen.api.schemas.campaigns import (
    CampaignCreateRequest,
    CampaignItemResponse,
    CampaignResponse,
)
from flowgen.application.services import CampaignService, NewCampaign

router = APIRouter()


@router.post("", response_model=CampaignResponse, status_code=status.HTTP_201_CREATED)
async def create_campaign(
    request: CampaignCreateRequest,
    service: CampaignService = Depends(get_campaign_service),
) -> CampaignResponse:
    """Create a campaign and start rendering one video per text."""
    campaign = await service.create_campaign(
        NewCampaign(
            campaign_name=request.campaign_name,
            campaign_description=request.campaign_description,
            user_id=request.user_id,
            thread_name=request.thread_name,
            tts_text_list=request.tts_text_list,
            api_key=request.apikey,
        )
    )
    return CampaignResponse(
        id=str(campaign.id),
        campaign_name=campaign.campaign_name,
        campaign_description=campaign.campaign_description,
        user_id=campaign.user_id,
        used_thread=campaign.used_thread,
        tts_text_list=[
            CampaignItemResponse(
                text=item.text,
                status=item.status.value,
                video_url=item.video_url,
                error=item.error,
            )
            for item in campaign.items
        ],
        status=campaign.status.value,
        created_at=campaign.created_at,
    )
