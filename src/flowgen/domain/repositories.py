"""Repository interfaces using Protocol classes.

Repositories provide an abstraction over the document store, allowing the
dispatch and completion layers to stay independent of MongoDB. Every write
is a targeted field update keyed by content so that applying the same
completion twice leaves the same state behind.
"""

from typing import Any, Optional, Protocol

from flowgen.domain.entities import (
    ApiKey,
    Campaign,
    CampaignStatus,
    ItemStatus,
    ThreadRecord,
    ThreadStatus,
)


class ApiKeyRepository(Protocol):
    """Repository protocol for API keys."""

    async def get_by_key(
        self, api_key: str, user_id: Optional[str] = None
    ) -> Optional[ApiKey]:
        """Get an API key, optionally requiring a specific owner."""
        ...

    async def increment_uses(self, api_key: str, amount: int = 1) -> None:
        """Add to the usage counter of an API key."""
        ...


class ThreadRepository(Protocol):
    """Repository protocol for threads (stored in the ``flows`` collection)."""

    async def get_by_name(
        self, thread_name: str, user_id: Optional[str] = None
    ) -> Optional[ThreadRecord]:
        ...

    async def create(self, thread: ThreadRecord) -> ThreadRecord:
        ...

    async def mark_status_by_correlation(
        self,
        correlation_id: str,
        status: ThreadStatus,
        error: Optional[str] = None,
    ) -> Optional[ThreadRecord]:
        """Set the render status of the thread created under a correlation id.

        Returns the updated thread, or None when no thread matches.
        """
        ...

    async def set_transcript(
        self, user_id: str, thread_name: str, transcript: Any
    ) -> bool:
        ...

    async def set_transcript_failed(
        self, user_id: str, thread_name: str, error: str
    ) -> bool:
        ...


class CampaignRepository(Protocol):
    """Repository protocol for campaigns."""

    async def get(self, campaign_id: Any) -> Optional[Campaign]:
        ...

    async def find_by_name(self, user_id: str, campaign_name: str) -> Optional[Campaign]:
        """Case-insensitive lookup of a user's campaign by name."""
        ...

    async def create(self, campaign: Campaign) -> Campaign:
        ...

    async def update_item(
        self,
        campaign_id: Any,
        text: str,
        status: ItemStatus,
        *,
        video_url: Optional[str] = None,
        error: Optional[str] = None,
    ) -> bool:
        """Update the item whose text matches. Returns True if one matched."""
        ...

    async def set_status(self, campaign_id: Any, status: CampaignStatus) -> None:
        ...


class RequestRepository(Protocol):
    """Repository protocol for delivered video requests."""

    async def ensure_indexes(self) -> None:
        """Create the unique index on correlation id."""
        ...

    async def record(
        self,
        correlation_id: str,
        *,
        user_id: str,
        thread_name: str,
        tts_text: str,
        video_url: Optional[str] = None,
    ) -> bool:
        """Record a completed request once per correlation id.

        Returns True only for the call that created the record.
        """
        ...


class UserRepository(Protocol):
    """Repository protocol for user voice-clone state."""

    async def set_voice_cloned(self, user_id: str) -> bool:
        ...

    async def set_voice_clone_failed(self, user_id: str, error: str) -> bool:
        ...
