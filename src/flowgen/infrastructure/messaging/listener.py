"""Standing consumers for the durable completion queues.

Workers report terminal outcomes on one completion queue per job type. A
:class:`CompletionListener` decodes those messages and hands them to a
:class:`CompletionHandler`, which applies idempotent record updates and may
return a notification for the user's SSE channel. Replies that reached a
dispatcher after its deadline enter the same path through :meth:`forward`.
"""

from typing import Any, ClassVar, Dict, Optional, Protocol, Type

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

from flowgen.domain.jobs import Job, Notification, is_success_reply
from flowgen.infrastructure.messaging.broker import Delivery, MessageBroker

logger = structlog.get_logger(__name__)


class CompletionMessage(BaseModel):
    """Fields every completion message carries; the rest is job specific."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    status: str
    success: Optional[bool] = None
    error: Optional[str] = None
    message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return is_success_reply({"status": self.status, "success": self.success})

    @property
    def failure_reason(self) -> str:
        return self.error or self.message or f"Worker reported status '{self.status}'"


class NotificationSink(Protocol):
    def publish(self, identity: str, payload: Dict[str, Any]) -> bool:
        ...


class CompletionHandler(Protocol):
    """Applies one job type's completion messages to the document store."""

    name: ClassVar[str]
    message_model: ClassVar[Type[CompletionMessage]]

    async def apply(
        self, message: CompletionMessage, correlation_id: Optional[str]
    ) -> Optional[Notification]:
        ...


class CompletionListener:
    """Consumes a durable completion queue for one job type.

    Delivery policy:

    * a body that is not a JSON object or has no ``status`` is a poison
      message and is rejected without requeue;
    * a message missing the handler's business fields is logged and acked;
    * an error raised while applying the update requeues the message.
    """

    def __init__(
        self,
        broker: MessageBroker,
        queue_name: str,
        handler: CompletionHandler,
        hub: Optional[NotificationSink] = None,
    ):
        self._broker = broker
        self.queue_name = queue_name
        self.handler = handler
        self._hub = hub
        self._consumer_tag: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._consumer_tag is not None

    async def start(self) -> None:
        """Consume the completion queue; ``consume`` declares it durable."""
        if self._consumer_tag is not None:
            return
        self._consumer_tag = await self._broker.consume(
            self.queue_name, self.handle, durable=True
        )
        logger.info(
            "Completion listener started",
            listener=self.handler.name,
            queue=self.queue_name,
        )

    async def stop(self) -> None:
        tag, self._consumer_tag = self._consumer_tag, None
        if tag is None:
            return
        await self._broker.cancel(tag)
        logger.info(
            "Completion listener stopped",
            listener=self.handler.name,
            queue=self.queue_name,
        )

    async def handle(self, delivery: Delivery) -> None:
        log = logger.bind(
            listener=self.handler.name,
            queue=delivery.queue,
            correlation_id=delivery.correlation_id,
            redelivered=delivery.redelivered,
        )

        try:
            data = delivery.json()
        except ValueError as exc:
            log.error("Poison completion message rejected", error=str(exc))
            delivery.reject(requeue=False)
            return

        if not isinstance(data, dict) or "status" not in data:
            log.error("Poison completion message rejected", error="missing status")
            delivery.reject(requeue=False)
            return

        try:
            await self.process(data, delivery.correlation_id)
        except Exception as exc:
            log.error(
                "Completion update failed; requeueing",
                error=str(exc),
                exc_info=exc,
            )
            delivery.reject(requeue=True)
            return

        delivery.ack()

    async def process(
        self, data: Dict[str, Any], correlation_id: Optional[str]
    ) -> Optional[Notification]:
        """Validate a decoded completion message and apply it."""
        log = logger.bind(listener=self.handler.name, correlation_id=correlation_id)

        try:
            message = self.handler.message_model.model_validate(data)
        except ValidationError as exc:
            log.warning(
                "Completion message missing required fields; dropped",
                errors=exc.errors(include_url=False),
            )
            return None

        log.info("Completion received", status=message.status)
        notification = await self.handler.apply(message, correlation_id)

        if notification is not None and self._hub is not None:
            delivered = self._hub.publish(notification.identity, notification.payload)
            log.debug(
                "Completion notification pushed",
                identity=notification.identity,
                delivered=delivered,
            )
        return notification

    async def forward(self, job: Job, reply: Dict[str, Any]) -> None:
        """Apply a reply that arrived after its dispatcher stopped waiting.

        The job's context supplies the business keys the worker reply does
        not repeat; fields present in the reply win.
        """
        data = {**job.context, **reply}
        if "status" not in data:
            logger.warning(
                "Late reply without status dropped",
                listener=self.handler.name,
                correlation_id=job.correlation_id,
            )
            return
        await self.process(data, job.correlation_id)
