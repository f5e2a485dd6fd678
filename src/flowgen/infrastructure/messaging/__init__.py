"""Broker transport, job dispatch and completion listeners."""

from flowgen.infrastructure.messaging.broker import Delivery, Disposition, MessageBroker
from flowgen.infrastructure.messaging.dispatcher import JobDispatcher
from flowgen.infrastructure.messaging.listener import (
    CompletionHandler,
    CompletionListener,
    CompletionMessage,
)
from flowgen.infrastructure.messaging.registry import (
    CorrelationEntry,
    CorrelationRegistry,
    EntryState,
)

__all__ = [
    "CompletionHandler",
    "CompletionListener",
    "CompletionMessage",
    "CorrelationEntry",
    "CorrelationRegistry",
    "Delivery",
    "Disposition",
    "EntryState",
    "JobDispatcher",
    "MessageBroker",
]
