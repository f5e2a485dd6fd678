"""Campaign item completions (``Campaign_completion``).

Each message settles one item of a campaign, matched by its text. After the
item update the campaign's aggregate status is recomputed and written only
when it changed, so a redelivered message leaves the same state behind.
"""

from typing import Optional

import structlog
from pydantic import AliasChoices, Field

from flowgen.domain.entities import ItemStatus
from flowgen.domain.jobs import Notification
from flowgen.domain.repositories import CampaignRepository
from flowgen.infrastructure.messaging.listener import CompletionMessage

logger = structlog.get_logger(__name__)


class CampaignCompletion(CompletionMessage):
    campaign_id: str = Field(validation_alias=AliasChoices("campaignId", "campaign_id"))
    tts_text: str = Field(validation_alias=AliasChoices("ttsText", "tts_text"))
    video_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("video_url", "videoUrl")
    )


class CampaignCompletionHandler:
    name = "campaign"
    message_model = CampaignCompletion

    def __init__(self, campaigns: CampaignRepository):
        self.campaigns = campaigns

    async def apply(
        self, message: CampaignCompletion, correlation_id: Optional[str]
    ) -> Optional[Notification]:
        log = logger.bind(campaign_id=message.campaign_id, correlation_id=correlation_id)

        if message.succeeded:
            item_status = ItemStatus.READY
            matched = await self.campaigns.update_item(
                message.campaign_id,
                message.tts_text,
                item_status,
                video_url=(message.video_url or "").strip(),
            )
        else:
            item_status = ItemStatus.FAILED
            matched = await self.campaigns.update_item(
                message.campaign_id,
                message.tts_text,
                item_status,
                error=message.error or "Unknown error",
            )

        if not matched:
            log.warning("No campaign item matched", tts_text=message.tts_text)
            return None

        campaign = await self.campaigns.get(message.campaign_id)
        if campaign is None:
            log.warning("Campaign disappeared after item update")
            return None

        new_status = campaign.aggregate_status()
        if new_status != campaign.status:
            await self.campaigns.set_status(campaign.id, new_status)
            log.info(
                "Campaign status changed",
                old_status=campaign.status.value,
                new_status=new_status.value,
            )

        return Notification(
            identity=campaign.user_id,
            payload={
                "type": "campaign",
                "campaign_id": str(campaign.id),
                "campaign_name": campaign.campaign_name,
                "tts_text": message.tts_text,
                "item_status": item_status.value,
                "campaign_status": new_status.value,
            },
        )
