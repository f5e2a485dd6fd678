"""Thread repository implementation (``flows`` collection)."""

from typing import Any, Dict, Optional

from pymongo import ReturnDocument

from flowgen.domain.entities import ThreadRecord, ThreadStatus
from flowgen.infrastructure.persistence.repositories.base_repository import (
    MongoRepository,
    utcnow,
)


class MongoThreadRepository(MongoRepository[ThreadRecord]):
    """Threads are stored as documents in the ``flows`` collection."""

    collection_name = "flows"

    def to_domain(self, document: Dict[str, Any]) -> ThreadRecord:
        return ThreadRecord(
            id=document.get("_id"),
            user_id=str(document["user_id"]),
            thread_name=document["thread_name"],
            status=ThreadStatus(document.get("status", ThreadStatus.PENDING)),
            correlation_id=document.get("correlation_id"),
            description=document.get("description", ""),
        )

    async def get_by_name(
        self, thread_name: str, user_id: Optional[str] = None
    ) -> Optional[ThreadRecord]:
        query: Dict[str, Any] = {"thread_name": thread_name}
        if user_id is not None:
            query["user_id"] = user_id
        return await self._find_one(query)

    async def create(self, thread: ThreadRecord) -> ThreadRecord:
        now = utcnow()
        document = {
            "user_id": thread.user_id,
            "thread_name": thread.thread_name,
            "description": thread.description,
            "correlation_id": thread.correlation_id,
            "status": thread.status.value,
            "created_at": now,
            "updated_at": now,
        }
        result = await self.collection.insert_one(document)
        thread.id = result.inserted_id
        return thread

    async def mark_status_by_correlation(
        self,
        correlation_id: str,
        status: ThreadStatus,
        error: Optional[str] = None,
    ) -> Optional[ThreadRecord]:
        update: Dict[str, Any] = {"status": status.value, "updated_at": utcnow()}
        if error is not None:
            update["error"] = error
        document = await self.collection.find_one_and_update(
            {"correlation_id": correlation_id},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
        return self.to_domain(document) if document else None

    async def set_transcript(
        self, user_id: str, thread_name: str, transcript: Any
    ) -> bool:
        result = await self.collection.update_one(
            {"user_id": user_id, "thread_name": thread_name},
            {
                "$set": {
                    "transcript": transcript,
                    "transcript_status": "ready",
                    "updated_at": utcnow(),
                },
                "$unset": {"transcript_error": ""},
            },
        )
        return result.matched_count > 0

    async def set_transcript_failed(
        self, user_id: str, thread_name: str, error: str
    ) -> bool:
        result = await self.collection.update_one(
            {"user_id": user_id, "thread_name": thread_name},
            {
                "$set": {
                    "transcript_status": "failed",
                    "transcript_error": error,
                    "updated_at": utcnow(),
                }
            },
        )
        return result.matched_count > 0
