"""API key repository implementation."""

from typing import Any, Dict, Optional

from flowgen.domain.entities import ApiKey
from flowgen.infrastructure.persistence.repositories.base_repository import (
    MongoRepository,
)


class MongoApiKeyRepository(MongoRepository[ApiKey]):
    """API keys stored in the ``api_keys`` collection."""

    collection_name = "api_keys"

    def to_domain(self, document: Dict[str, Any]) -> ApiKey:
        return ApiKey(
            api_key=document["api_key"],
            user_id=str(document["user_id"]),
            n_uses=int(document.get("n_uses", 0)),
        )

    async def get_by_key(
        self, api_key: str, user_id: Optional[str] = None
    ) -> Optional[ApiKey]:
        """Get an API key.

        Args:
            api_key: The key as presented by the caller
            user_id: When given, the key must belong to this user

        Returns:
            The key if found, None otherwise
        """
        query: Dict[str, Any] = {"api_key": api_key}
        if user_id is not None:
            query["user_id"] = user_id
        return await self._find_one(query)

    async def increment_uses(self, api_key: str, amount: int = 1) -> None:
        await self.collection.update_one(
            {"api_key": api_key}, {"$inc": {"n_uses": amount}}
        )
