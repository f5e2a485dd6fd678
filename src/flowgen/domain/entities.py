"""Business records owned by the document store."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional


class ItemStatus(str, Enum):
    """Status of one campaign item (one rendered video)."""

    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class CampaignStatus(str, Enum):
    """Aggregate status of a campaign."""

    PENDING = "pending"
    READY = "ready"
    PARTIAL = "partial"
    FAILED = "failed"


class ThreadStatus(str, Enum):
    """Lifecycle of a thread (flow) render."""

    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


@dataclass
class CampaignItem:
    text: str
    status: ItemStatus = ItemStatus.PENDING
    video_url: str = ""
    error: Optional[str] = None


@dataclass
class Campaign:
    """A batch of videos rendered from one thread with different TTS texts."""

    id: Any
    campaign_name: str
    user_id: str
    used_thread: str
    items: List[CampaignItem] = field(default_factory=list)
    status: CampaignStatus = CampaignStatus.PENDING
    campaign_description: str = ""
    created_at: Optional[datetime] = None

    def aggregate_status(self) -> CampaignStatus:
        """Derive the campaign status from its item statuses.

        All ready gives ``ready``, all failed gives ``failed``, a mix of ready
        and failed gives ``partial``. Anything else keeps the current status.
        """
        if not self.items:
            return self.status

        statuses = [item.status for item in self.items]
        if all(s == ItemStatus.READY for s in statuses):
            return CampaignStatus.READY
        if all(s == ItemStatus.FAILED for s in statuses):
            return CampaignStatus.FAILED
        if ItemStatus.FAILED in statuses and ItemStatus.READY in statuses:
            return CampaignStatus.PARTIAL
        return self.status


@dataclass
class ThreadRecord:
    id: Any
    user_id: str
    thread_name: str
    status: ThreadStatus = ThreadStatus.PENDING
    correlation_id: Optional[str] = None
    description: str = ""

    @property
    def is_ready(self) -> bool:
        return self.status == ThreadStatus.READY


@dataclass
class ApiKey:
    api_key: str
    user_id: str
    n_uses: int = 0
