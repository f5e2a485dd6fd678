"""Campaign creation: one video job per text, fanned out to the workers."""

from dataclasses import dataclass
from typing import List

import structlog

from flowgen.application.payloads import CampaignVideoJob
from flowgen.domain.entities import Campaign, CampaignItem, ItemStatus, ThreadStatus
from flowgen.domain.exceptions import (
    AccessDeniedError,
    BrokerUnavailableError,
    JobValidationError,
    ResourceConflictError,
    ResourceNotFoundError,
)
from flowgen.domain.repositories import (
    ApiKeyRepository,
    CampaignRepository,
    ThreadRepository,
)
from flowgen.infrastructure.messaging.dispatcher import JobDispatcher

logger = structlog.get_logger(__name__)


@dataclass
class NewCampaign:
    campaign_name: str
    campaign_description: str
    user_id: str
    thread_name: str
    tts_text_list: List[str]
    api_key: str


class CampaignService:
    """Service for creating campaigns."""

    def __init__(
        self,
        api_keys: ApiKeyRepository,
        threads: ThreadRepository,
        campaigns: CampaignRepository,
        dispatcher: JobDispatcher[CampaignVideoJob],
        completion_queue: str,
    ):
        """Initialize with dependencies."""
        self.api_keys = api_keys
        self.threads = threads
        self.campaigns = campaigns
        self.dispatcher = dispatcher
        self.completion_queue = completion_queue

    async def create_campaign(self, request: NewCampaign) -> Campaign:
        """Create a campaign and publish one video job per text.

        Items are matched by text when their completions arrive, so the
        texts of a campaign must be unique.

        Args:
            request: Campaign definition

        Returns:
            The stored campaign with all items pending

        Raises:
            JobValidationError: Duplicate texts, or the thread is not ready
            AccessDeniedError: The API key does not belong to the user
            ResourceNotFoundError: The user has no thread with that name
            ResourceConflictError: The user already has a campaign with that name
            BrokerUnavailableError: Some jobs could not be published; their
                items are marked failed
        """
        duplicates = sorted(
            {text for text in request.tts_text_list if request.tts_text_list.count(text) > 1}
        )
        if duplicates:
            raise JobValidationError(
                "tts_text_list entries must be unique",
                field_errors={"tts_text_list": duplicates},
            )

        key = await self.api_keys.get_by_key(request.api_key, user_id=request.user_id)
        if key is None:
            raise AccessDeniedError("Invalid API key for the given user.")

        thread = await self.threads.get_by_name(request.thread_name, request.user_id)
        if thread is None:
            raise ResourceNotFoundError("Thread", request.thread_name)

        if thread.status != ThreadStatus.READY:
            raise JobValidationError(
                f'Thread "{request.thread_name}" exists but is not ready. '
                f'Current status: "{thread.status.value}".'
            )

        if await self.campaigns.find_by_name(request.user_id, request.campaign_name):
            raise ResourceConflictError(
                "A campaign with this name already exists for this user.",
                details={"campaign_name": request.campaign_name},
            )

        campaign = await self.campaigns.create(
            Campaign(
                id=None,
                campaign_name=request.campaign_name,
                campaign_description=request.campaign_description,
                user_id=request.user_id,
                used_thread=request.thread_name,
                items=[CampaignItem(text=text) for text in request.tts_text_list],
            )
        )
        await self.api_keys.increment_uses(request.api_key, len(campaign.items))

        await self._dispatch_items(campaign)
        logger.info(
            "Campaign created",
            campaign_id=str(campaign.id),
            items=len(campaign.items),
        )
        return campaign

    async def _dispatch_items(self, campaign: Campaign) -> None:
        for index, item in enumerate(campaign.items):
            payload = CampaignVideoJob(
                user_id=campaign.user_id,
                thread=campaign.used_thread,
                tts_text=item.text,
                campaign_id=str(campaign.id),
            )
            try:
                await self.dispatcher.publish(
                    payload,
                    reply_to=self.completion_queue,
                    context={"campaign_id": str(campaign.id)},
                )
            except BrokerUnavailableError as exc:
                await self._fail_remaining(campaign, campaign.items[index:], exc.message)
                raise

    async def _fail_remaining(
        self, campaign: Campaign, items: List[CampaignItem], error: str
    ) -> None:
        logger.error(
            "Campaign dispatch interrupted",
            campaign_id=str(campaign.id),
            unsent=len(items),
            error=error,
        )
        for item in items:
            item.status = ItemStatus.FAILED
            item.error = error
            await self.campaigns.update_item(
                campaign.id, item.text, ItemStatus.FAILED, error=error
            )
        new_status = campaign.aggregate_status()
        if new_status != campaign.status:
            campaign.status = new_status
            await self.campaigns.set_status(campaign.id, new_status)
