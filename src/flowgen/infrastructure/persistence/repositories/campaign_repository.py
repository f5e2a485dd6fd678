"""Campaign repository implementation."""

import re
from typing import Any, Dict, Optional

from flowgen.domain.entities import (
    Campaign,
    CampaignItem,
    CampaignStatus,
    ItemStatus,
)
from flowgen.infrastructure.persistence.repositories.base_repository import (
    MongoRepository,
    as_object_id,
    utcnow,
)


class MongoCampaignRepository(MongoRepository[Campaign]):
    """Campaigns and their per-text items (``tts_text_list``)."""

    collection_name = "campaigns"

    def to_domain(self, document: Dict[str, Any]) -> Campaign:
        items = [
            CampaignItem(
                text=item["text"],
                status=ItemStatus(item.get("status", ItemStatus.PENDING)),
                video_url=item.get("video_url", ""),
                error=item.get("error"),
            )
            for item in document.get("tts_text_list", [])
        ]
        return Campaign(
            id=document.get("_id"),
            campaign_name=document["campaign_name"],
            user_id=str(document["user_id"]),
            used_thread=document.get("used_thread", ""),
            items=items,
            status=CampaignStatus(document.get("status", CampaignStatus.PENDING)),
            campaign_description=document.get("campaign_description", ""),
            created_at=document.get("created_at"),
        )

    @staticmethod
    def to_document(campaign: Campaign) -> Dict[str, Any]:
        return {
            "campaign_name": campaign.campaign_name,
            "campaign_description": campaign.campaign_description,
            "user_id": campaign.user_id,
            "used_thread": campaign.used_thread,
            "tts_text_list": [
                {"text": item.text, "status": item.status.value, "video_url": item.video_url}
                for item in campaign.items
            ],
            "status": campaign.status.value,
            "created_at": campaign.created_at,
        }

    async def get(self, campaign_id: Any) -> Optional[Campaign]:
        object_id = as_object_id(campaign_id)
        if object_id is None:
            return None
        return await self._find_one({"_id": object_id})

    async def find_by_name(self, user_id: str, campaign_name: str) -> Optional[Campaign]:
        pattern = f"^{re.escape(campaign_name)}$"
        return await self._find_one(
            {
                "user_id": user_id,
                "campaign_name": {"$regex": pattern, "$options": "i"},
            }
        )

    async def create(self, campaign: Campaign) -> Campaign:
        if campaign.created_at is None:
            campaign.created_at = utcnow()
        result = await self.collection.insert_one(self.to_document(campaign))
        campaign.id = result.inserted_id
        return campaign

    async def update_item(
        self,
        campaign_id: Any,
        text: str,
        status: ItemStatus,
        *,
        video_url: Optional[str] = None,
        error: Optional[str] = None,
    ) -> bool:
        object_id = as_object_id(campaign_id)
        if object_id is None:
            return False

        update: Dict[str, Any] = {"tts_text_list.$.status": status.value}
        if video_url is not None:
            update["tts_text_list.$.video_url"] = video_url
        if error is not None:
            update["tts_text_list.$.error"] = error

        result = await self.collection.update_one(
            {"_id": object_id, "tts_text_list.text": text},
            {"$set": update},
        )
        return result.matched_count > 0

    async def set_status(self, campaign_id: Any, status: CampaignStatus) -> None:
        object_id = as_object_id(campaign_id)
        if object_id is None:
            return
        await self.collection.update_one(
            {"_id": object_id}, {"$set": {"status": status.value}}
        )
