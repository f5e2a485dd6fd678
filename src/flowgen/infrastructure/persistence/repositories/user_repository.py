"""User repository implementation (voice clone state)."""

from flowgen.infrastructure.persistence.repositories.base_repository import (
    MongoRepository,
    utcnow,
)


class MongoUserRepository(MongoRepository[dict]):
    collection_name = "users"

    def to_domain(self, document):
        return document

    async def set_voice_cloned(self, user_id: str) -> bool:
        result = await self.collection.update_one(
            {"user_id": user_id},
            {
                "$set": {"voice_cloned": True, "updated_at": utcnow()},
                "$unset": {"voice_clone_error": ""},
            },
        )
        return result.matched_count > 0

    async def set_voice_clone_failed(self, user_id: str, error: str) -> bool:
        result = await self.collection.update_one(
            {"user_id": user_id},
            {
                "$set": {
                    "voice_cloned": False,
                    "voice_clone_error": error,
                    "updated_at": utcnow(),
                }
            },
        )
        return result.matched_count > 0
