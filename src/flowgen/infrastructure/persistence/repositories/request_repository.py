"""Repository for delivered video requests."""

from typing import Optional

import structlog
from pymongo.errors import DuplicateKeyError

from flowgen.infrastructure.persistence.repositories.base_repository import (
    MongoRepository,
    utcnow,
)

logger = structlog.get_logger(__name__)


class MongoRequestRepository(MongoRepository[dict]):
    """One ``requests`` document per completed video job.

    Documents are keyed by correlation id so a redelivered completion
    never creates a second record. A unique index on ``correlation_id``
    backs this for concurrent writers.
    """

    collection_name = "requests"

    def to_domain(self, document):
        return document

    async def ensure_indexes(self) -> None:
        await self.collection.create_index(
            "correlation_id", unique=True, name="correlation_id_unique"
        )

    async def record(
        self,
        correlation_id: str,
        *,
        user_id: str,
        thread_name: str,
        tts_text: str,
        video_url: Optional[str] = None,
    ) -> bool:
        """Insert the record unless one exists.

        Returns:
            True only for the call that created the document
        """
        try:
            result = await self.collection.update_one(
                {"correlation_id": correlation_id},
                {
                    "$setOnInsert": {
                        "correlation_id": correlation_id,
                        "user_id": user_id,
                        "thread_name": thread_name,
                        "tts_text": tts_text,
                        "video_url": video_url or "",
                        "created_at": utcnow(),
                    }
                },
                upsert=True,
            )
        except DuplicateKeyError:
            # A concurrent upsert inserted the same correlation id first
            logger.info("Request already recorded", correlation_id=correlation_id)
            return False
        return result.upserted_id is not None
