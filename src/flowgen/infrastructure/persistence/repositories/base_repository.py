"""Base repository for MongoDB collections."""

from datetime import datetime, timezone
from typing import Any, Dict, Generic, Optional, TypeVar

from bson import ObjectId
from pymongo.asynchronous.collection import AsyncCollection

from flowgen.infrastructure.persistence.document_store import DocumentStore

DomainEntity = TypeVar("DomainEntity")


def as_object_id(value: Any) -> Optional[ObjectId]:
    """Parse a document id. Returns None for values that are not ObjectIds."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MongoRepository(Generic[DomainEntity]):
    """Gives subclasses their collection and a document-to-entity hook."""

    collection_name: str

    def __init__(self, store: DocumentStore):
        self.store = store

    @property
    def collection(self) -> AsyncCollection:
        return self.store.collection(self.collection_name)

    def to_domain(self, document: Dict[str, Any]) -> DomainEntity:
        raise NotImplementedError

    async def _find_one(self, query: Dict[str, Any]) -> Optional[DomainEntity]:
        document = await self.collection.find_one(query)
        return self.to_domain(document) if document else None
