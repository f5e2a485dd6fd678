"""Server-sent events hub.

Maps a subscriber identity (the user id) to one push channel. Delivery is
best-effort: nothing is queued for users who are not connected and a full
channel drops the event.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)

HELLO_EVENT = {"user_id": "system", "message": "Connected to SSE"}

_CLOSED = object()


def format_event(payload: Any) -> str:
    """Render one SSE ``data`` frame."""
    return f"data: {json.dumps(payload, default=str)}\n\n"


class SubscriberChannel:
    """Bounded queue of events waiting to be written to one connection."""

    def __init__(self, identity: str, maxsize: int = 100):
        self.identity = identity
        self.connected_at = datetime.now(timezone.utc)
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, payload: Dict[str, Any]) -> bool:
        """Queue an event. Returns False if the channel is closed or full."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning("SSE channel full; event dropped", identity=self.identity)
            return False
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Make room for the close marker so a blocked reader wakes up.
        while True:
            try:
                self._queue.put_nowait(_CLOSED)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()

    async def get(self) -> Any:
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()


async def event_stream(
    channel: SubscriberChannel, keepalive_seconds: float = 15.0
) -> AsyncIterator[str]:
    """Yield SSE frames for a channel until it is closed.

    A ``: keep-alive`` comment is sent whenever no event arrives within
    ``keepalive_seconds``.
    """
    while True:
        try:
            item = await asyncio.wait_for(channel.get(), keepalive_seconds)
        except asyncio.TimeoutError:
            if channel.closed:
                return
            yield ": keep-alive\n\n"
            continue
        if item is _CLOSED:
            return
        yield format_event(item)


class SSEHub:
    """Identity to channel registry used by listeners and the request feed.

    All methods run on the event loop.
    """

    def __init__(self, channel_buffer: int = 100):
        self._channel_buffer = channel_buffer
        self._channels: Dict[str, SubscriberChannel] = {}

    def subscribe(self, identity: str) -> SubscriberChannel:
        """Open a channel for ``identity``, replacing any existing one."""
        channel = SubscriberChannel(identity, maxsize=self._channel_buffer)
        previous = self._channels.get(identity)
        self._channels[identity] = channel
        if previous is not None:
            previous.close()
            logger.info("SSE subscriber replaced", identity=identity)

        channel.offer(dict(HELLO_EVENT))
        logger.info(
            "SSE subscriber connected", identity=identity, active=len(self._channels)
        )
        return channel

    def publish(self, identity: str, payload: Dict[str, Any]) -> bool:
        channel = self._channels.get(identity)
        if channel is None:
            return False
        return channel.offer(payload)

    def broadcast(self, payload: Dict[str, Any]) -> int:
        delivered = 0
        for channel in list(self._channels.values()):
            if channel.offer(payload):
                delivered += 1
        return delivered

    def unsubscribe(
        self, identity: str, channel: Optional[SubscriberChannel] = None
    ) -> bool:
        """Remove a subscriber.

        With ``channel`` given, the entry is only removed while it still
        belongs to that channel, so a stale disconnect cannot evict a newer
        connection for the same identity.
        """
        current = self._channels.get(identity)
        if current is None:
            return False
        if channel is not None and current is not channel:
            channel.close()
            return False

        del self._channels[identity]
        current.close()
        logger.info(
            "SSE subscriber disconnected", identity=identity, active=len(self._channels)
        )
        return True

    def connected_users(self) -> List[str]:
        return list(self._channels)

    def close_all(self) -> None:
        for channel in self._channels.values():
            channel.close()
        self._channels.clear()

    def __len__(self) -> int:
        return len(self._channels)

    def __contains__(self, identity: object) -> bool:
        return identity in self._channels
