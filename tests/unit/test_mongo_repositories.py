"""Unit tests for the MongoDB repositories."""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from flowgen.domain.entities import (
    Campaign,
    CampaignItem,
    CampaignStatus,
    ItemStatus,
    ThreadRecord,
    ThreadStatus,
)
from flowgen.infrastructure.config import MongoConfig
from flowgen.infrastructure.persistence.document_store import DocumentStore
from flowgen.infrastructure.persistence.repositories import (
    MongoApiKeyRepository,
    MongoCampaignRepository,
    MongoRequestRepository,
    MongoThreadRepository,
    MongoUserRepository,
)
from flowgen.infrastructure.persistence.repositories.base_repository import (
    as_object_id,
)


@pytest.fixture
def collection():
    collection = MagicMock()
    collection.find_one = AsyncMock(return_value=None)
    collection.insert_one = AsyncMock()
    collection.update_one = AsyncMock()
    collection.find_one_and_update = AsyncMock(return_value=None)
    return collection


@pytest.fixture
def store(collection):
    store = MagicMock()
    store.collection.return_value = collection
    return store


def test_as_object_id():
    """Test id parsing accepts ObjectIds and their hex strings only."""
    object_id = ObjectId()

    assert as_object_id(object_id) is object_id
    assert as_object_id(str(object_id)) == object_id
    assert as_object_id("not-an-id") is None
    assert as_object_id(None) is None


@pytest.mark.asyncio
class TestApiKeyRepository:
    """Test API key lookups."""

    async def test_get_by_key_with_owner(self, store, collection):
        """Test the owner is part of the query when given."""
        collection.find_one.return_value = {
            "api_key": "key-1",
            "user_id": "user-1",
            "n_uses": 3,
        }
        repo = MongoApiKeyRepository(store)

        key = await repo.get_by_key("key-1", user_id="user-1")

        store.collection.assert_called_with("api_keys")
        collection.find_one.assert_awaited_once_with(
            {"api_key": "key-1", "user_id": "user-1"}
        )
        assert key.n_uses == 3

    async def test_get_by_key_missing(self, store, collection):
        """Test an unknown key returns None."""
        repo = MongoApiKeyRepository(store)

        assert await repo.get_by_key("nope") is None
        collection.find_one.assert_awaited_once_with({"api_key": "nope"})

    async def test_increment_uses(self, store, collection):
        """Test usage is incremented atomically."""
        await MongoApiKeyRepository(store).increment_uses("key-1", 4)

        collection.update_one.assert_awaited_once_with(
            {"api_key": "key-1"}, {"$inc": {"n_uses": 4}}
        )


@pytest.mark.asyncio
class TestThreadRepository:
    """Test thread documents in the flows collection."""

    async def test_create_sets_id(self, store, collection):
        """Test creating a thread stores it pending and returns its id."""
        inserted = ObjectId()
        collection.insert_one.return_value = MagicMock(inserted_id=inserted)
        repo = MongoThreadRepository(store)

        thread = await repo.create(
            ThreadRecord(
                id=None, user_id="user-1", thread_name="intro", correlation_id="cid"
            )
        )

        store.collection.assert_called_with("flows")
        document = collection.insert_one.await_args.args[0]
        assert document["status"] == "pending"
        assert document["correlation_id"] == "cid"
        assert thread.id == inserted

    async def test_mark_status_by_correlation(self, store, collection):
        """Test the status update is keyed by correlation id."""
        collection.find_one_and_update.return_value = {
            "_id": ObjectId(),
            "user_id": "user-1",
            "thread_name": "intro",
            "status": "failed",
            "correlation_id": "cid",
        }
        repo = MongoThreadRepository(store)

        thread = await repo.mark_status_by_correlation(
            "cid", ThreadStatus.FAILED, error="bad input"
        )

        query, update = collection.find_one_and_update.await_args.args
        assert query == {"correlation_id": "cid"}
        assert update["$set"]["status"] == "failed"
        assert update["$set"]["error"] == "bad input"
        assert (
            collection.find_one_and_update.await_args.kwargs["return_document"]
            is ReturnDocument.AFTER
        )
        assert thread.status is ThreadStatus.FAILED

    async def test_mark_status_unknown(self, store):
        """Test an unknown correlation id returns None."""
        repo = MongoThreadRepository(store)

        assert await repo.mark_status_by_correlation("cid", ThreadStatus.READY) is None

    async def test_set_transcript(self, store, collection):
        """Test the transcript is stored and a previous error cleared."""
        collection.update_one.return_value = MagicMock(matched_count=1)
        repo = MongoThreadRepository(store)

        assert await repo.set_transcript("user-1", "intro", ["Alice"]) is True

        query, update = collection.update_one.await_args.args
        assert query == {"user_id": "user-1", "thread_name": "intro"}
        assert update["$set"]["transcript"] == ["Alice"]
        assert update["$unset"] == {"transcript_error": ""}


@pytest.mark.asyncio
class TestCampaignRepository:
    """Test campaign documents and item updates."""

    async def test_update_item_positional(self, store, collection):
        """Test item updates target the entry with the matching text."""
        object_id = ObjectId()
        collection.update_one.return_value = MagicMock(matched_count=1)
        repo = MongoCampaignRepository(store)

        matched = await repo.update_item(
            str(object_id), "Hello", ItemStatus.READY, video_url="https://v"
        )

        assert matched is True
        collection.update_one.assert_awaited_once_with(
            {"_id": object_id, "tts_text_list.text": "Hello"},
            {
                "$set": {
                    "tts_text_list.$.status": "ready",
                    "tts_text_list.$.video_url": "https://v",
                }
            },
        )

    async def test_update_item_no_match(self, store, collection):
        """Test a text that matches no item reports False."""
        collection.update_one.return_value = MagicMock(matched_count=0)
        repo = MongoCampaignRepository(store)

        assert not await repo.update_item(
            str(ObjectId()), "x", ItemStatus.FAILED, error="boom"
        )

    async def test_invalid_id(self, store, collection):
        """Test ids that are not ObjectIds never reach the server."""
        repo = MongoCampaignRepository(store)

        assert await repo.get("abc") is None
        assert await repo.update_item("abc", "x", ItemStatus.READY) is False
        collection.find_one.assert_not_called()
        collection.update_one.assert_not_called()

    async def test_find_by_name_case_insensitive(self, store, collection):
        """Test the name lookup is an anchored case-insensitive match."""
        repo = MongoCampaignRepository(store)

        await repo.find_by_name("user-1", "Spring (v2)")

        collection.find_one.assert_awaited_once_with(
            {
                "user_id": "user-1",
                "campaign_name": {"$regex": r"^Spring\ \(v2\)$", "$options": "i"},
            }
        )

    async def test_create_and_read_back(self, store, collection):
        """Test a campaign round-trips through its document form."""
        inserted = ObjectId()
        collection.insert_one.return_value = MagicMock(inserted_id=inserted)
        repo = MongoCampaignRepository(store)

        campaign = await repo.create(
            Campaign(
                id=None,
                campaign_name="Spring",
                user_id="user-1",
                used_thread="intro",
                items=[CampaignItem(text="A")],
            )
        )
        document = collection.insert_one.await_args.args[0]
        document["_id"] = campaign.id
        collection.find_one.return_value = document

        stored = await repo.get(inserted)

        assert document["tts_text_list"] == [
            {"text": "A", "status": "pending", "video_url": ""}
        ]
        assert isinstance(document["created_at"], datetime)
        assert stored.id == inserted
        assert stored.items[0].status is ItemStatus.PENDING
        assert stored.status is CampaignStatus.PENDING

    async def test_set_status(self, store, collection):
        """Test the aggregate status write."""
        object_id = ObjectId()

        await MongoCampaignRepository(store).set_status(object_id, CampaignStatus.PARTIAL)

        collection.update_one.assert_awaited_once_with(
            {"_id": object_id}, {"$set": {"status": "partial"}}
        )


@pytest.mark.asyncio
class TestRequestRepository:
    """Test idempotent request records."""

    async def test_record_upserts_on_correlation_id(self, store, collection):
        """Test the record is inserted only when absent."""
        collection.update_one.return_value = MagicMock(upserted_id=ObjectId())
        repo = MongoRequestRepository(store)

        inserted = await repo.record(
            "cid-1", user_id="user-1", thread_name="intro", tts_text="hi"
        )

        query, update = collection.update_one.await_args.args
        assert query == {"correlation_id": "cid-1"}
        assert set(update) == {"$setOnInsert"}
        assert update["$setOnInsert"]["video_url"] == ""
        assert collection.update_one.await_args.kwargs["upsert"] is True
        assert inserted is True

    async def test_record_existing(self, store, collection):
        """Test a second record for the same id reports no insert."""
        collection.update_one.return_value = MagicMock(upserted_id=None)

        inserted = await MongoRequestRepository(store).record(
            "cid-1", user_id="user-1", thread_name="intro", tts_text="hi"
        )

        assert inserted is False

    async def test_record_concurrent_duplicate(self, store, collection):
        """Test losing an upsert race to the unique index reports no insert."""
        collection.update_one.side_effect = DuplicateKeyError(
            "E11000 duplicate key error collection: flowgen_db.requests"
        )

        inserted = await MongoRequestRepository(store).record(
            "cid-1", user_id="user-1", thread_name="intro", tts_text="hi"
        )

        assert inserted is False

    async def test_ensure_indexes(self, store, collection):
        """Test correlation ids are backed by a unique index."""
        collection.create_index = AsyncMock(return_value="correlation_id_unique")

        await MongoRequestRepository(store).ensure_indexes()

        collection.create_index.assert_awaited_once_with(
            "correlation_id", unique=True, name="correlation_id_unique"
        )


@pytest.mark.asyncio
class TestUserRepository:
    """Test voice clone flags."""

    async def test_set_voice_cloned(self, store, collection):
        """Test the flag is set and any old error cleared."""
        collection.update_one.return_value = MagicMock(matched_count=1)

        assert await MongoUserRepository(store).set_voice_cloned("user-1") is True

        query, update = collection.update_one.await_args.args
        assert query == {"user_id": "user-1"}
        assert update["$set"]["voice_cloned"] is True

    async def test_set_voice_clone_failed_unknown_user(self, store, collection):
        """Test an unknown user reports no match."""
        collection.update_one.return_value = MagicMock(matched_count=0)

        assert not await MongoUserRepository(store).set_voice_clone_failed(
            "user-9", "boom"
        )


@pytest.mark.asyncio
class TestDocumentStore:
    """Test the lazily connected store."""

    async def test_collection_from_configured_database(self):
        """Test collections come from the configured database."""
        client = MagicMock()
        store = DocumentStore(MongoConfig(database="flowgen_test"), client=client)

        store.collection("flows")

        client.__getitem__.assert_called_once_with("flowgen_test")

    async def test_health(self):
        """Test ping failures report unhealthy."""
        from pymongo.errors import ServerSelectionTimeoutError

        client = MagicMock()
        client.admin.command = AsyncMock(side_effect=ServerSelectionTimeoutError("down"))
        store = DocumentStore(MongoConfig(), client=client)

        assert await store.is_healthy() is False

        client.admin.command = AsyncMock(return_value={"ok": 1.0})
        assert await store.is_healthy() is True

    async def test_close(self):
        """Test closing releases the client once."""
        client = MagicMock()
        client.close = AsyncMock()
        store = DocumentStore(MongoConfig(), client=client)

        await store.close()
        await store.close()

        client.close.assert_awaited_once()
