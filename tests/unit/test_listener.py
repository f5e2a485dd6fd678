"""Tests for completion listeners."""

from typing import Optional

import pytest

from flowgen.domain.jobs import Job, Notification
from flowgen.infrastructure.messaging.broker import Disposition
from flowgen.infrastructure.messaging.listener import (
    CompletionListener,
    CompletionMessage,
)


class ExampleCompletion(CompletionMessage):
    user_id: str


class RecordingHandler:
    name = "example"
    message_model = ExampleCompletion

    def __init__(self, fail: bool = False):
        self.applied = []
        self.fail = fail

    async def apply(
        self, message: ExampleCompletion, correlation_id: Optional[str]
    ) -> Optional[Notification]:
        if self.fail:
            raise RuntimeError("document store unavailable")
        self.applied.append((message, correlation_id))
        return Notification(
            identity=message.user_id,
            payload={"type": "example", "status": message.status},
        )


@pytest.fixture
def handler():
    return RecordingHandler()


@pytest.fixture
def listener(broker, handler, hub):
    return CompletionListener(broker, "example_completion", handler, hub)


class TestCompletionMessage:
    """Test the shared completion fields."""

    def test_status_success(self):
        """Test status success counts as success."""
        assert CompletionMessage(status="success").succeeded

    def test_legacy_success_flag(self):
        """Test success: true counts as success."""
        assert CompletionMessage(status="done", success=True).succeeded

    def test_failure_reason_prefers_error(self):
        """Test the failure reason falls back from error to message."""
        assert CompletionMessage(status="error", error="boom").failure_reason == "boom"
        assert CompletionMessage(status="error", message="bad").failure_reason == "bad"
        assert "error" in CompletionMessage(status="error").failure_reason

    def test_extra_fields_kept(self):
        """Test job specific fields survive validation."""
        message = CompletionMessage.model_validate({"status": "success", "extra": 1})

        assert message.model_extra == {"extra": 1}


@pytest.mark.asyncio
class TestCompletionListener:
    """Test delivery dispositions."""

    async def test_start_consumes_durable_queue(self, broker, listener):
        """Test the listener consumes its durable queue once."""
        await listener.start()
        await listener.start()

        assert listener.running
        assert broker.active_queues() == ["example_completion"]
        assert broker.declared["example_completion"]["durable"] is True

        await listener.stop()
        assert not listener.running
        assert broker.active_queues() == []

    async def test_valid_message_acked(self, broker, listener, handler, hub):
        """Test a valid message is applied, pushed and acked."""
        channel = hub.subscribe("user-1")
        await channel.get()  # hello event
        await listener.start()

        delivery = await broker.deliver(
            "example_completion",
            {"status": "success", "user_id": "user-1"},
            correlation_id="cid-1",
        )

        assert delivery.disposition is Disposition.ACK
        [(message, correlation_id)] = handler.applied
        assert message.user_id == "user-1"
        assert correlation_id == "cid-1"
        assert await channel.get() == {"type": "example", "status": "success"}

    async def test_undecodable_body_rejected(self, broker, listener, handler):
        """Test a body that is not JSON is rejected without requeue."""
        await listener.start()

        delivery = await broker.deliver("example_completion", raw=b"\x00garbage")

        assert delivery.disposition is Disposition.REJECT
        assert handler.applied == []

    async def test_non_object_rejected(self, broker, listener):
        """Test a JSON array is rejected without requeue."""
        await listener.start()

        delivery = await broker.deliver("example_completion", [1, 2, 3])

        assert delivery.disposition is Disposition.REJECT

    async def test_missing_status_rejected(self, broker, listener):
        """Test a message without status is a poison message."""
        await listener.start()

        delivery = await broker.deliver("example_completion", {"user_id": "user-1"})

        assert delivery.disposition is Disposition.REJECT

    async def test_missing_business_fields_acked(self, broker, listener, handler):
        """Test a message missing handler fields is dropped with an ack."""
        await listener.start()

        delivery = await broker.deliver("example_completion", {"status": "success"})

        assert delivery.disposition is Disposition.ACK
        assert handler.applied == []

    async def test_store_error_requeued(self, broker, hub):
        """Test a failing record update requeues the message."""
        listener = CompletionListener(
            broker, "example_completion", RecordingHandler(fail=True), hub
        )
        await listener.start()

        delivery = await broker.deliver(
            "example_completion", {"status": "success", "user_id": "user-1"}
        )

        assert delivery.disposition is Disposition.REQUEUE

    async def test_notification_without_subscriber(self, broker, listener, handler):
        """Test a notification for an offline user is simply not delivered."""
        await listener.start()

        delivery = await broker.deliver(
            "example_completion", {"status": "error", "user_id": "offline"}
        )

        assert delivery.disposition is Disposition.ACK
        assert len(handler.applied) == 1

    async def test_forward_merges_context(self, listener, handler):
        """Test a late reply is completed with the job's business keys."""
        job = Job(
            queue_name="example",
            payload={},
            correlation_id="cid-9",
            context={"user_id": "user-1", "status": "stale"},
        )

        await listener.forward(job, {"status": "success"})

        [(message, correlation_id)] = handler.applied
        assert message.user_id == "user-1"
        assert message.status == "success"
        assert correlation_id == "cid-9"

    async def test_forward_without_status_dropped(self, listener, handler):
        """Test a late reply with no status anywhere is dropped."""
        job = Job(queue_name="example", payload={}, context={"user_id": "user-1"})

        await listener.forward(job, {"video_url": "x"})

        assert handler.applied == []
