"""Correlation registry for outstanding request/reply jobs.

The registry is touched from the event loop (``submit`` and its deadline) and
from the broker's consumer thread (reply delivery), so every state transition
is a check-and-set performed under one lock.
"""

import asyncio
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

import structlog

from flowgen.domain.exceptions import CorrelationCollisionError
from flowgen.domain.jobs import Job

logger = structlog.get_logger(__name__)


class EntryState(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"


@dataclass
class CorrelationEntry:
    """A pending-reply slot for one submitted job."""

    correlation_id: str
    job: Job
    reply_queue: str
    consumer_tag: Optional[str] = None
    waiter: Optional[asyncio.Future] = None
    state: EntryState = EntryState.PENDING
    reply: Optional[Dict[str, Any]] = None
    malformed: bool = False
    timed_out_at: Optional[float] = field(default=None, repr=False)


def _settle(waiter: asyncio.Future, entry: CorrelationEntry) -> None:
    if not waiter.done():
        waiter.set_result(entry)


class CorrelationRegistry:
    """Thread-safe map of correlation id to :class:`CorrelationEntry`.

    Exactly one of :meth:`resolve` and :meth:`expire` succeeds for an entry.
    A resolved entry is removed at once; a timed-out entry stays until its
    late reply is claimed with :meth:`claim_late` or it is discarded.
    """

    def __init__(self):
        self._entries: Dict[str, CorrelationEntry] = {}
        self._lock = threading.Lock()

    def register(
        self,
        correlation_id: str,
        job: Job,
        reply_queue: str,
        consumer_tag: Optional[str] = None,
        waiter: Optional[asyncio.Future] = None,
    ) -> CorrelationEntry:
        entry = CorrelationEntry(
            correlation_id=correlation_id,
            job=job,
            reply_queue=reply_queue,
            consumer_tag=consumer_tag,
            waiter=waiter,
        )
        with self._lock:
            if correlation_id in self._entries:
                raise CorrelationCollisionError(
                    f"Correlation id {correlation_id} is already registered"
                )
            self._entries[correlation_id] = entry
        return entry

    def resolve(
        self,
        correlation_id: str,
        reply: Dict[str, Any],
        malformed: bool = False,
    ) -> bool:
        """Settle a pending entry with a reply.

        Returns False for unknown, resolved and timed-out ids. Safe to call
        from any thread; the waiter is woken on its own loop.
        """
        with self._lock:
            entry = self._entries.get(correlation_id)
            if entry is None or entry.state is not EntryState.PENDING:
                return False
            entry.state = EntryState.RESOLVED
            entry.reply = reply
            entry.malformed = malformed
            del self._entries[correlation_id]

        waiter = entry.waiter
        if waiter is not None:
            waiter.get_loop().call_soon_threadsafe(_settle, waiter, entry)
        return True

    def expire(self, correlation_id: str) -> bool:
        """Move a pending entry to timed-out. False if it already settled."""
        with self._lock:
            entry = self._entries.get(correlation_id)
            if entry is None or entry.state is not EntryState.PENDING:
                return False
            entry.state = EntryState.TIMED_OUT
            entry.timed_out_at = time.monotonic()
            return True

    def claim_late(self, correlation_id: str) -> Optional[CorrelationEntry]:
        """Remove and return a timed-out entry. Only the first caller gets it."""
        with self._lock:
            entry = self._entries.get(correlation_id)
            if entry is None or entry.state is not EntryState.TIMED_OUT:
                return None
            del self._entries[correlation_id]
            return entry

    def discard(self, correlation_id: str) -> Optional[CorrelationEntry]:
        with self._lock:
            return self._entries.pop(correlation_id, None)

    def get(self, correlation_id: str) -> Optional[CorrelationEntry]:
        with self._lock:
            return self._entries.get(correlation_id)

    def entries(self) -> List[CorrelationEntry]:
        """Snapshot of the current entries."""
        with self._lock:
            return list(self._entries.values())

    def clear(self) -> List[CorrelationEntry]:
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        if entries:
            logger.info("Correlation registry cleared", dropped=len(entries))
        return entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, correlation_id: object) -> bool:
        with self._lock:
            return correlation_id in self._entries

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._entries))
