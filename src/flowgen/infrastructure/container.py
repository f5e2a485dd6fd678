"""Wiring of the long-lived resources and services.

The application lifespan builds one :class:`ServiceContainer`, starts it,
and closes it on shutdown. Tests build one around in-memory doubles.
"""

from dataclasses import dataclass, field
from typing import List, Optional

import structlog
from pymongo.errors import PyMongoError

from flowgen.application.completion import (
    CampaignCompletionHandler,
    ThreadCompletionHandler,
    TranscriptCompletionHandler,
    VideoCompletionHandler,
    VoiceCloneCompletionHandler,
)
from flowgen.application.payloads import (
    CampaignVideoJob,
    ThreadJob,
    TranscriptJob,
    VideoJob,
    VoiceCloneJob,
)
from flowgen.application.services import (
    CampaignService,
    ThreadService,
    VideoGenerationService,
    VoiceCloneService,
)
from flowgen.domain.exceptions import BrokerUnavailableError
from flowgen.domain.repositories import (
    ApiKeyRepository,
    CampaignRepository,
    RequestRepository,
    ThreadRepository,
    UserRepository,
)
from flowgen.infrastructure.config import Settings
from flowgen.infrastructure.messaging.broker import MessageBroker
from flowgen.infrastructure.messaging.dispatcher import JobDispatcher
from flowgen.infrastructure.messaging.kombu_broker import KombuBroker
from flowgen.infrastructure.messaging.listener import CompletionListener
from flowgen.infrastructure.persistence.document_store import DocumentStore
from flowgen.infrastructure.persistence.repositories import (
    MongoApiKeyRepository,
    MongoCampaignRepository,
    MongoRequestRepository,
    MongoThreadRepository,
    MongoUserRepository,
)
from flowgen.infrastructure.sse.hub import SSEHub
from flowgen.infrastructure.sse.request_feed import RequestFeed

logger = structlog.get_logger(__name__)


@dataclass
class Repositories:
    api_keys: ApiKeyRepository
    threads: ThreadRepository
    campaigns: CampaignRepository
    requests: RequestRepository
    users: UserRepository

    @classmethod
    def mongo(cls, store: DocumentStore) -> "Repositories":
        return cls(
            api_keys=MongoApiKeyRepository(store),
            threads=MongoThreadRepository(store),
            campaigns=MongoCampaignRepository(store),
            requests=MongoRequestRepository(store),
            users=MongoUserRepository(store),
        )


@dataclass
class ServiceContainer:
    settings: Settings
    broker: MessageBroker
    repositories: Repositories
    hub: SSEHub
    store: Optional[DocumentStore] = None
    feed: Optional[RequestFeed] = None

    listeners: List[CompletionListener] = field(default_factory=list, init=False)
    dispatchers: List[JobDispatcher] = field(default_factory=list, init=False)

    def __post_init__(self):
        queues = self.settings.queues
        dispatch = self.settings.dispatch
        repos = self.repositories

        self.video_listener = CompletionListener(
            self.broker,
            queues.video_completion,
            VideoCompletionHandler(repos.requests, repos.api_keys),
            self.hub,
        )
        self.transcript_listener = CompletionListener(
            self.broker,
            queues.transcript_completion,
            TranscriptCompletionHandler(repos.threads),
            self.hub,
        )
        self.thread_listener = CompletionListener(
            self.broker,
            queues.thread_completion,
            ThreadCompletionHandler(repos.threads),
            self.hub,
        )
        self.clone_listener = CompletionListener(
            self.broker,
            queues.cloning_completion,
            VoiceCloneCompletionHandler(repos.users),
            self.hub,
        )
        self.campaign_listener = CompletionListener(
            self.broker,
            queues.campaign_completion,
            CampaignCompletionHandler(repos.campaigns),
            self.hub,
        )
        self.listeners = [
            self.video_listener,
            self.transcript_listener,
            self.thread_listener,
            self.clone_listener,
            self.campaign_listener,
        ]

        self.video_dispatcher: JobDispatcher[VideoJob] = JobDispatcher(
            self.broker,
            queues.generate,
            dispatch.video_timeout_seconds,
            orphan_ttl=dispatch.orphan_ttl_seconds,
            late_reply_listener=self.video_listener,
        )
        self.campaign_dispatcher: JobDispatcher[CampaignVideoJob] = JobDispatcher(
            self.broker,
            queues.generate,
            dispatch.video_timeout_seconds,
            orphan_ttl=dispatch.orphan_ttl_seconds,
        )
        self.transcript_dispatcher: JobDispatcher[TranscriptJob] = JobDispatcher(
            self.broker,
            queues.transcript,
            dispatch.transcript_timeout_seconds,
            orphan_ttl=dispatch.orphan_ttl_seconds,
            late_reply_listener=self.transcript_listener,
        )
        self.clone_dispatcher: JobDispatcher[VoiceCloneJob] = JobDispatcher(
            self.broker,
            queues.cloning,
            dispatch.clone_timeout_seconds,
            orphan_ttl=dispatch.orphan_ttl_seconds,
            late_reply_listener=self.clone_listener,
        )
        self.thread_dispatcher: JobDispatcher[ThreadJob] = JobDispatcher(
            self.broker,
            queues.thread,
            dispatch.video_timeout_seconds,
        )
        self.dispatchers = [
            self.video_dispatcher,
            self.campaign_dispatcher,
            self.transcript_dispatcher,
            self.clone_dispatcher,
            self.thread_dispatcher,
        ]

        self.video_service = VideoGenerationService(
            repos.api_keys, repos.threads, self.video_dispatcher, self.video_listener
        )
        self.thread_service = ThreadService(
            repos.threads,
            self.thread_dispatcher,
            self.transcript_dispatcher,
            self.transcript_listener,
            thread_completion_queue=queues.thread_completion,
            user_data_dir=self.settings.storage.user_data_dir,
        )
        self.clone_service = VoiceCloneService(self.clone_dispatcher, self.clone_listener)
        self.campaign_service = CampaignService(
            repos.api_keys,
            repos.threads,
            repos.campaigns,
            self.campaign_dispatcher,
            completion_queue=queues.campaign_completion,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceContainer":
        store = DocumentStore(settings.mongo)
        hub = SSEHub(channel_buffer=settings.sse.channel_buffer)
        return cls(
            settings=settings,
            broker=KombuBroker(settings.broker),
            repositories=Repositories.mongo(store),
            hub=hub,
            store=store,
            feed=RequestFeed(store, hub) if settings.mongo.watch_requests else None,
        )

    async def start(self) -> None:
        """Start the completion listeners and the request feed.

        A broker outage at startup is logged, not raised: durable consumers
        are restored by the broker adapter once it can connect.
        The unique index on request records is created here as well.
        """
        for listener in self.listeners:
            try:
                await listener.start()
            except BrokerUnavailableError as exc:
                logger.error(
                    "Completion listener failed to start",
                    queue=listener.queue_name,
                    error=exc.message,
                )
        try:
            await self.repositories.requests.ensure_indexes()
        except PyMongoError as exc:
            logger.error("Request index creation failed", error=str(exc))
        if self.feed is not None:
            self.feed.start()

    async def close(self) -> None:
        if self.feed is not None:
            await self.feed.stop()
        for dispatcher in self.dispatchers:
            await dispatcher.close()
        for listener in self.listeners:
            try:
                await listener.stop()
            except BrokerUnavailableError as exc:
                logger.warning(
                    "Completion listener stop failed",
                    queue=listener.queue_name,
                    error=exc.message,
                )
        self.hub.close_all()
        await self.broker.close()
        if self.store is not None:
            await self.store.close()
        logger.info("Service container closed")
