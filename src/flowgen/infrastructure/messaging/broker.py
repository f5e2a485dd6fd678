"""Broker-agnostic message and transport contracts.

The dispatcher and the completion listeners only see :class:`Delivery` and
:class:`MessageBroker`; the kombu adapter in ``kombu_broker`` implements the
transport.
"""

import json
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol


class Disposition(str, Enum):
    """What the broker should do with a delivery once its handler returns."""

    PENDING = "pending"
    ACK = "ack"
    REJECT = "reject"
    REQUEUE = "requeue"


class Delivery:
    """One message received from a queue.

    Handlers settle a delivery by calling :meth:`ack` or :meth:`reject`. The
    first call wins; later calls return False so a message is acknowledged at
    most once. The transport applies the recorded disposition after the
    handler returns, on the thread that owns the channel.
    """

    def __init__(
        self,
        body: bytes,
        *,
        queue: str,
        correlation_id: Optional[str] = None,
        reply_to: Optional[str] = None,
        redelivered: bool = False,
    ):
        self.body = body
        self.queue = queue
        self.correlation_id = correlation_id
        self.reply_to = reply_to
        self.redelivered = redelivered
        self.disposition = Disposition.PENDING

    @property
    def settled(self) -> bool:
        return self.disposition is not Disposition.PENDING

    def ack(self) -> bool:
        if self.settled:
            return False
        self.disposition = Disposition.ACK
        return True

    def reject(self, requeue: bool = False) -> bool:
        if self.settled:
            return False
        self.disposition = Disposition.REQUEUE if requeue else Disposition.REJECT
        return True

    def json(self) -> Any:
        """Decode the body as JSON. Raises ValueError on malformed content."""
        raw = self.body.decode("utf-8") if isinstance(self.body, bytes) else self.body
        return json.loads(raw)

    def __repr__(self) -> str:
        return (
            f"Delivery(queue={self.queue!r}, correlation_id={self.correlation_id!r}, "
            f"disposition={self.disposition.value})"
        )


DeliveryHandler = Callable[[Delivery], Awaitable[None]]


class MessageBroker(Protocol):
    """Asynchronous view of the message broker."""

    async def declare_queue(
        self,
        name: str,
        *,
        durable: bool = True,
        exclusive: bool = False,
        auto_delete: bool = False,
    ) -> None:
        """Idempotently declare a queue."""
        ...

    async def publish(
        self,
        queue: str,
        body: bytes,
        *,
        correlation_id: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> None:
        """Publish a persistent JSON message to a queue on the default exchange."""
        ...

    async def consume(
        self,
        queue: str,
        handler: DeliveryHandler,
        *,
        durable: bool = True,
        exclusive: bool = False,
        auto_delete: bool = False,
    ) -> str:
        """Declare a queue and start consuming it. Returns a consumer tag."""
        ...

    async def cancel(self, consumer_tag: str) -> None:
        """Stop a consumer. Unknown tags are ignored."""
        ...

    async def close(self) -> None:
        ...
