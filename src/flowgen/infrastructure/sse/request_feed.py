"""Pushes new ``requests`` documents to their owner's SSE channel."""

import asyncio
import contextlib
from typing import Any, Dict, Optional

import structlog
from bson import ObjectId
from fastapi.encoders import jsonable_encoder
from pymongo.errors import OperationFailure, PyMongoError

from flowgen.infrastructure.persistence.document_store import DocumentStore
from flowgen.infrastructure.sse.hub import SSEHub

logger = structlog.get_logger(__name__)

INSERTS_ONLY = [{"$match": {"operationType": "insert"}}]


class RequestFeed:
    """Watches the ``requests`` collection with a change stream.

    Change streams need a replica set; on a standalone server the feed logs
    the failure once and stays off.
    """

    def __init__(
        self,
        store: DocumentStore,
        hub: SSEHub,
        collection: str = "requests",
        retry_delay: float = 5.0,
    ):
        self._store = store
        self._hub = hub
        self._collection = collection
        self._retry_delay = retry_delay
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="request-feed")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        collection = self._store.collection(self._collection)
        while True:
            try:
                async with await collection.watch(INSERTS_ONLY) as stream:
                    logger.info("Request feed watching", collection=self._collection)
                    async for change in stream:
                        self.dispatch(change.get("fullDocument"))
            except OperationFailure as exc:
                logger.error("Request feed unavailable", error=str(exc))
                return
            except PyMongoError as exc:
                logger.warning("Request feed interrupted", error=str(exc))
                await asyncio.sleep(self._retry_delay)

    def dispatch(self, document: Optional[Dict[str, Any]]) -> bool:
        """Deliver one inserted document to the subscriber named by its user_id."""
        if not document or not document.get("user_id"):
            return False
        payload = jsonable_encoder(document, custom_encoder={ObjectId: str})
        return self._hub.publish(str(document["user_id"]), payload)
