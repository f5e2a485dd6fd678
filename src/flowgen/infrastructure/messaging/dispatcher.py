"""Request/reply job dispatch over the message broker.

A :class:`JobDispatcher` publishes a job to a durable work queue and waits on
a private reply queue for the worker's answer. If the answer arrives before
the deadline the caller gets :class:`Completed`; otherwise it gets
:class:`Processing` and the reply, whenever it comes, is forwarded to the
completion listener for that job type.
"""

import asyncio
import json
import uuid
from typing import Any, Dict, Generic, Mapping, Optional, Protocol, Set, TypeVar, Union

import structlog
from pydantic import BaseModel

from flowgen.domain.jobs import Completed, Job, Outcome, Processing, new_id
from flowgen.infrastructure.messaging.broker import Delivery, MessageBroker
from flowgen.infrastructure.messaging.registry import (
    CorrelationEntry,
    CorrelationRegistry,
    EntryState,
)

logger = structlog.get_logger(__name__)

P = TypeVar("P", bound=BaseModel)


class LateReplyListener(Protocol):
    """Receives replies that arrived after ``submit`` gave up waiting."""

    async def forward(self, job: Job, reply: Dict[str, Any]) -> None:
        ...


def encode_payload(payload: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
    """Convert a job payload to the JSON-ready mapping sent to workers."""
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json", by_alias=True, exclude_none=True)
    return dict(payload)


class JobDispatcher(Generic[P]):
    """Publishes one job type and correlates the worker replies.

    Args:
        broker: Message broker handle
        queue_name: Durable work queue the workers consume
        default_timeout: Seconds to wait for a reply when ``submit`` gets none
        registry: Correlation registry; a private one is created if omitted
        reply_prefix: Prefix of the per-job reply queue names
        orphan_ttl: Seconds a timed-out job keeps its reply consumer
        late_reply_listener: Where late replies are forwarded
    """

    def __init__(
        self,
        broker: MessageBroker,
        queue_name: str,
        default_timeout: float,
        *,
        registry: Optional[CorrelationRegistry] = None,
        reply_prefix: Optional[str] = None,
        orphan_ttl: float = 3600.0,
        late_reply_listener: Optional[LateReplyListener] = None,
    ):
        self._broker = broker
        self.queue_name = queue_name
        self.default_timeout = default_timeout
        self.registry = registry if registry is not None else CorrelationRegistry()
        self.reply_prefix = reply_prefix or "response"
        self.orphan_ttl = orphan_ttl
        self.late_reply_listener = late_reply_listener

        self._reapers: Dict[str, asyncio.TimerHandle] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    async def submit(
        self,
        payload: Union[P, Mapping[str, Any]],
        timeout: Optional[float] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> Outcome:
        """Publish a job and wait for its reply up to ``timeout`` seconds.

        Raises:
            BrokerUnavailableError: If the queue cannot be declared or
                consumed, or the job cannot be published. No correlation
                entry is left behind in that case.
        """
        job = Job(
            queue_name=self.queue_name,
            payload=encode_payload(payload),
            context=dict(context or {}),
        )
        timeout = self.default_timeout if timeout is None else timeout
        log = logger.bind(
            queue=self.queue_name,
            job_id=job.job_id,
            correlation_id=job.correlation_id,
        )

        reply_queue = f"{self.reply_prefix}-{uuid.uuid4()}"
        waiter = asyncio.get_running_loop().create_future()

        await self._broker.declare_queue(self.queue_name, durable=True)
        entry = self.registry.register(
            job.correlation_id, job, reply_queue, waiter=waiter
        )
        try:
            entry.consumer_tag = await self._broker.consume(
                reply_queue,
                self._on_reply,
                durable=False,
                exclusive=True,
                auto_delete=True,
            )
            await self._broker.publish(
                self.queue_name,
                self._encode(job),
                correlation_id=job.correlation_id,
                reply_to=reply_queue,
            )
        except BaseException:
            self.registry.discard(job.correlation_id)
            self._schedule_release(entry.consumer_tag)
            raise

        log.info("Job published", reply_queue=reply_queue, timeout=timeout)

        try:
            settled = await asyncio.wait_for(asyncio.shield(waiter), timeout)
        except asyncio.TimeoutError:
            if self.registry.expire(job.correlation_id):
                self._arm_reaper(entry)
                log.info("Job still processing after deadline", timeout=timeout)
                return Processing(job)
            if entry.state is not EntryState.RESOLVED:
                # Discarded by close() while we were waiting.
                return Processing(job)
            settled = await waiter
        except asyncio.CancelledError:
            # The caller went away; let the reply take the completion path.
            if self.registry.expire(job.correlation_id):
                self._arm_reaper(entry)
            else:
                self._schedule_release(entry.consumer_tag)
            log.info("Job submission cancelled")
            raise

        self._schedule_release(entry.consumer_tag)
        log.info("Job completed", malformed=settled.malformed)
        return Completed(job, settled.reply, settled.malformed)

    async def publish(
        self,
        payload: Union[P, Mapping[str, Any]],
        reply_to: str,
        context: Optional[Mapping[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ) -> Job:
        """Publish a job whose reply goes to a durable completion queue.

        Callers that key a record on the correlation id before publishing
        pass it in; otherwise a fresh one is generated.
        """
        job = Job(
            queue_name=self.queue_name,
            payload=encode_payload(payload),
            context=dict(context or {}),
            correlation_id=correlation_id or new_id(),
        )
        await self._broker.declare_queue(self.queue_name, durable=True)
        await self._broker.publish(
            self.queue_name,
            self._encode(job),
            correlation_id=job.correlation_id,
            reply_to=reply_to,
        )
        logger.info(
            "Job published",
            queue=self.queue_name,
            job_id=job.job_id,
            correlation_id=job.correlation_id,
            reply_to=reply_to,
        )
        return job

    @staticmethod
    def _encode(job: Job) -> bytes:
        return json.dumps(job.payload).encode("utf-8")

    async def _on_reply(self, delivery: Delivery) -> None:
        """Reply-queue handler. Every reply is acknowledged exactly once."""
        delivery.ack()

        correlation_id = delivery.correlation_id
        if not correlation_id:
            logger.warning("Reply without correlation id dropped", queue=delivery.queue)
            return

        malformed = False
        try:
            reply = delivery.json()
            if not isinstance(reply, dict):
                raise ValueError("reply is not a JSON object")
        except ValueError as exc:
            logger.warning(
                "Malformed worker reply",
                queue=self.queue_name,
                correlation_id=correlation_id,
                error=str(exc),
            )
            reply = {"status": "error", "error": f"Malformed worker reply: {exc}"}
            malformed = True

        if self.registry.resolve(correlation_id, reply, malformed):
            return

        entry = self.registry.claim_late(correlation_id)
        if entry is None:
            logger.debug(
                "Duplicate or unknown reply discarded",
                queue=self.queue_name,
                correlation_id=correlation_id,
            )
            return

        self._cancel_reaper(correlation_id)
        self._schedule_release(entry.consumer_tag)
        if malformed:
            return
        await self._forward(entry, reply)

    async def _forward(self, entry: CorrelationEntry, reply: Dict[str, Any]) -> None:
        log = logger.bind(
            queue=self.queue_name,
            job_id=entry.job.job_id,
            correlation_id=entry.correlation_id,
        )
        if self.late_reply_listener is None:
            log.warning("Late reply dropped; no completion listener")
            return
        log.info("Forwarding late reply to completion listener")
        try:
            await self.late_reply_listener.forward(entry.job, reply)
        except Exception as exc:
            # The reply is already acked; the durable record stays as it was.
            log.error("Late reply processing failed", error=str(exc), exc_info=exc)

    def _arm_reaper(self, entry: CorrelationEntry) -> None:
        loop = asyncio.get_running_loop()
        self._reapers[entry.correlation_id] = loop.call_later(
            self.orphan_ttl, self._reap, entry.correlation_id
        )

    def _cancel_reaper(self, correlation_id: str) -> None:
        handle = self._reapers.pop(correlation_id, None)
        if handle is not None:
            handle.cancel()

    def _reap(self, correlation_id: str) -> None:
        self._reapers.pop(correlation_id, None)
        entry = self.registry.claim_late(correlation_id)
        if entry is None:
            return
        logger.info(
            "Orphaned reply queue released",
            queue=self.queue_name,
            correlation_id=correlation_id,
            reply_queue=entry.reply_queue,
        )
        self._schedule_release(entry.consumer_tag)

    def _schedule_release(self, consumer_tag: Optional[str]) -> None:
        """Cancel a reply consumer in the background.

        Reply handlers run while the broker's consumer thread waits on them,
        so they must never await a broker call themselves.
        """
        if not consumer_tag:
            return
        task = asyncio.get_running_loop().create_task(self._release(consumer_tag))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _release(self, consumer_tag: str) -> None:
        try:
            await self._broker.cancel(consumer_tag)
        except Exception as exc:
            logger.warning(
                "Reply consumer release failed",
                consumer_tag=consumer_tag,
                error=str(exc),
            )

    @property
    def pending_releases(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for scheduled consumer releases to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Release every outstanding reply consumer and stop the reapers."""
        if self._closed:
            return
        self._closed = True

        for handle in self._reapers.values():
            handle.cancel()
        self._reapers.clear()

        for entry in self.registry.clear():
            self._schedule_release(entry.consumer_tag)
        await self.drain()
        logger.info("Job dispatcher closed", queue=self.queue_name)
