"""Pytest configuration and fixtures."""

import asyncio
import copy
import json
from dataclasses import dataclass
from itertools import count
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from flowgen.api.main import create_app
from flowgen.domain.entities import (
    ApiKey,
    Campaign,
    CampaignStatus,
    ItemStatus,
    ThreadRecord,
    ThreadStatus,
)
from flowgen.domain.exceptions import BrokerUnavailableError
from flowgen.infrastructure.config import Settings
from flowgen.infrastructure.container import Repositories, ServiceContainer
from flowgen.infrastructure.messaging.broker import Delivery, DeliveryHandler
from flowgen.infrastructure.sse.hub import SSEHub


@dataclass
class PublishedMessage:
    queue: str
    body: bytes
    correlation_id: Optional[str]
    reply_to: Optional[str]

    @property
    def payload(self) -> Any:
        return json.loads(self.body)


class InMemoryBroker:
    """Records publishes and lets tests play the worker side.

    Handlers stay reachable by queue name after their consumer is cancelled
    so late and duplicate deliveries can be replayed deterministically.
    """

    def __init__(self):
        self.declared: Dict[str, Dict[str, bool]] = {}
        self.published: List[PublishedMessage] = []
        self.handlers: Dict[str, DeliveryHandler] = {}
        self.consumers: Dict[str, str] = {}
        self.cancelled: List[str] = []
        self.closed = False
        self.fail_publish = False
        self.fail_consume = False
        self.fail_declare = False
        self._tags = count(1)

    async def declare_queue(
        self,
        name: str,
        *,
        durable: bool = True,
        exclusive: bool = False,
        auto_delete: bool = False,
    ) -> None:
        if self.fail_declare:
            raise BrokerUnavailableError()
        self.declared[name] = {
            "durable": durable,
            "exclusive": exclusive,
            "auto_delete": auto_delete,
        }

    async def publish(
        self,
        queue: str,
        body: bytes,
        *,
        correlation_id: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> None:
        if self.fail_publish:
            raise BrokerUnavailableError()
        self.published.append(PublishedMessage(queue, body, correlation_id, reply_to))

    async def consume(
        self,
        queue: str,
        handler: DeliveryHandler,
        *,
        durable: bool = True,
        exclusive: bool = False,
        auto_delete: bool = False,
    ) -> str:
        if self.fail_consume:
            raise BrokerUnavailableError()
        await self.declare_queue(
            queue, durable=durable, exclusive=exclusive, auto_delete=auto_delete
        )
        tag = f"ctag-{next(self._tags)}"
        self.handlers[queue] = handler
        self.consumers[tag] = queue
        return tag

    async def cancel(self, consumer_tag: str) -> None:
        if self.consumers.pop(consumer_tag, None) is not None:
            self.cancelled.append(consumer_tag)

    async def close(self) -> None:
        self.closed = True

    # -- worker side -------------------------------------------------------

    def messages(self, queue: str) -> List[PublishedMessage]:
        return [message for message in self.published if message.queue == queue]

    def active_queues(self) -> List[str]:
        return list(self.consumers.values())

    async def wait_for_publish(
        self, queue: str, count: int = 1, timeout: float = 2.0
    ) -> List[PublishedMessage]:
        async def _poll():
            while len(self.messages(queue)) < count:
                await asyncio.sleep(0.005)
            return self.messages(queue)

        return await asyncio.wait_for(_poll(), timeout)

    async def deliver(
        self,
        queue: str,
        payload: Any = None,
        *,
        correlation_id: Optional[str] = None,
        redelivered: bool = False,
        raw: Optional[bytes] = None,
    ) -> Delivery:
        body = raw if raw is not None else json.dumps(payload).encode("utf-8")
        delivery = Delivery(
            body,
            queue=queue,
            correlation_id=correlation_id,
            redelivered=redelivered,
        )
        await self.handlers[queue](delivery)
        return delivery

    async def reply(
        self,
        message: PublishedMessage,
        payload: Any = None,
        *,
        redelivered: bool = False,
        raw: Optional[bytes] = None,
    ) -> Delivery:
        return await self.deliver(
            message.reply_to,
            payload,
            correlation_id=message.correlation_id,
            redelivered=redelivered,
            raw=raw,
        )

    async def respond(self, queue: str, payload: Any, delay: float = 0.0) -> Delivery:
        """Act as a worker: answer the latest job published on ``queue``."""
        message = (await self.wait_for_publish(queue))[-1]
        if delay:
            await asyncio.sleep(delay)
        return await self.reply(message, payload)


class InMemoryApiKeyRepository:
    def __init__(self):
        self.keys: Dict[str, ApiKey] = {}

    def add(self, key: ApiKey) -> ApiKey:
        self.keys[key.api_key] = key
        return key

    async def get_by_key(self, api_key, user_id=None):
        key = self.keys.get(api_key)
        if key is None or (user_id is not None and key.user_id != user_id):
            return None
        return copy.copy(key)

    async def increment_uses(self, api_key, amount=1):
        if api_key in self.keys:
            self.keys[api_key].n_uses += amount


class InMemoryThreadRepository:
    def __init__(self):
        self.threads: List[ThreadRecord] = []
        self.errors: Dict[str, str] = {}
        self.transcripts: Dict[tuple, Dict[str, Any]] = {}
        self._ids = count(1)

    def add(self, thread: ThreadRecord) -> ThreadRecord:
        if thread.id is None:
            thread.id = f"thread-{next(self._ids)}"
        self.threads.append(thread)
        return thread

    async def get_by_name(self, thread_name, user_id=None):
        for thread in self.threads:
            if thread.thread_name == thread_name and (
                user_id is None or thread.user_id == user_id
            ):
                return copy.copy(thread)
        return None

    async def create(self, thread):
        return copy.copy(self.add(thread))

    async def mark_status_by_correlation(self, correlation_id, status, error=None):
        for thread in self.threads:
            if thread.correlation_id == correlation_id:
                thread.status = status
                if error is not None:
                    self.errors[correlation_id] = error
                return copy.copy(thread)
        return None

    def _exists(self, user_id, thread_name) -> bool:
        return any(
            t.user_id == user_id and t.thread_name == thread_name for t in self.threads
        )

    async def set_transcript(self, user_id, thread_name, transcript):
        if not self._exists(user_id, thread_name):
            return False
        self.transcripts[(user_id, thread_name)] = {
            "status": "ready",
            "transcript": transcript,
        }
        return True

    async def set_transcript_failed(self, user_id, thread_name, error):
        if not self._exists(user_id, thread_name):
            return False
        self.transcripts[(user_id, thread_name)] = {"status": "failed", "error": error}
        return True


class InMemoryCampaignRepository:
    def __init__(self):
        self.campaigns: Dict[str, Campaign] = {}
        self.status_writes: List[CampaignStatus] = []
        self.fail_updates = False
        self._ids = count(1)

    async def get(self, campaign_id):
        campaign = self.campaigns.get(str(campaign_id))
        return copy.deepcopy(campaign) if campaign else None

    async def find_by_name(self, user_id, campaign_name):
        for campaign in self.campaigns.values():
            if (
                campaign.user_id == user_id
                and campaign.campaign_name.lower() == campaign_name.lower()
            ):
                return copy.deepcopy(campaign)
        return None

    async def create(self, campaign):
        campaign.id = f"campaign-{next(self._ids)}"
        self.campaigns[campaign.id] = copy.deepcopy(campaign)
        return campaign

    async def update_item(self, campaign_id, text, status, *, video_url=None, error=None):
        if self.fail_updates:
            raise RuntimeError("document store unavailable")
        campaign = self.campaigns.get(str(campaign_id))
        if campaign is None:
            return False
        for item in campaign.items:
            if item.text == text:
                item.status = ItemStatus(status)
                if video_url is not None:
                    item.video_url = video_url
                if error is not None:
                    item.error = error
                return True
        return False

    async def set_status(self, campaign_id, status):
        campaign = self.campaigns.get(str(campaign_id))
        if campaign is not None:
            campaign.status = status
            self.status_writes.append(status)


class InMemoryRequestRepository:
    def __init__(self):
        self.records: Dict[str, Dict[str, Any]] = {}
        self.indexed = False

    async def ensure_indexes(self):
        self.indexed = True

    async def record(self, correlation_id, *, user_id, thread_name, tts_text, video_url=None):
        if correlation_id in self.records:
            return False
        self.records[correlation_id] = {
            "correlation_id": correlation_id,
            "user_id": user_id,
            "thread_name": thread_name,
            "tts_text": tts_text,
            "video_url": video_url or "",
        }
        return True


class InMemoryUserRepository:
    def __init__(self, *user_ids: str):
        self.users: Dict[str, Dict[str, Any]] = {uid: {} for uid in user_ids}

    async def set_voice_cloned(self, user_id):
        if user_id not in self.users:
            return False
        self.users[user_id] = {"voice_cloned": True}
        return True

    async def set_voice_clone_failed(self, user_id, error):
        if user_id not in self.users:
            return False
        self.users[user_id] = {"voice_cloned": False, "voice_clone_error": error}
        return True


@pytest.fixture
def test_settings() -> Settings:
    """Test settings with short deadlines and no external services."""
    return Settings(
        app={"environment": "test"},
        mongo={"watch_requests": False},
        dispatch={
            "video_timeout_seconds": 1.0,
            "transcript_timeout_seconds": 1.0,
            "clone_timeout_seconds": 1.0,
            "orphan_ttl_seconds": 60.0,
        },
        sse={"keepalive_seconds": 0.05},
    )


@pytest.fixture
def broker() -> InMemoryBroker:
    return InMemoryBroker()


@pytest.fixture
def hub() -> SSEHub:
    return SSEHub(channel_buffer=10)


@pytest.fixture
def repositories() -> Repositories:
    api_keys = InMemoryApiKeyRepository()
    api_keys.add(ApiKey(api_key="key-1", user_id="user-1"))
    api_keys.add(ApiKey(api_key="key-2", user_id="user-2"))

    threads = InMemoryThreadRepository()
    threads.add(
        ThreadRecord(
            id=None, user_id="user-1", thread_name="intro", status=ThreadStatus.READY
        )
    )
    threads.add(
        ThreadRecord(
            id=None,
            user_id="user-1",
            thread_name="draft",
            status=ThreadStatus.PENDING,
            correlation_id="draft-cid",
        )
    )

    return Repositories(
        api_keys=api_keys,
        threads=threads,
        campaigns=InMemoryCampaignRepository(),
        requests=InMemoryRequestRepository(),
        users=InMemoryUserRepository("user-1"),
    )


@pytest_asyncio.fixture
async def container(
    test_settings, broker, repositories, hub
) -> AsyncGenerator[ServiceContainer, None]:
    """Service container wired to the in-memory broker and repositories."""
    services = ServiceContainer(
        settings=test_settings,
        broker=broker,
        repositories=repositories,
        hub=hub,
    )
    yield services
    await services.close()


@pytest_asyncio.fixture
async def client(test_settings, container) -> AsyncGenerator[AsyncClient, None]:
    """Create test client around a pre-built container."""
    app = create_app(settings=test_settings, container=container)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
