"""Tests for the correlation registry."""

import asyncio
import threading

import pytest

from flowgen.domain.exceptions import CorrelationCollisionError
from flowgen.domain.jobs import Job
from flowgen.infrastructure.messaging.registry import CorrelationRegistry, EntryState


def make_job(correlation_id: str = "cid-1") -> Job:
    return Job(queue_name="generate", payload={}, correlation_id=correlation_id)


class TestCorrelationRegistry:
    """Test registry state transitions."""

    def test_register_duplicate_raises(self):
        """Test a correlation id can only be registered once."""
        registry = CorrelationRegistry()
        registry.register("cid-1", make_job(), "response-1")

        with pytest.raises(CorrelationCollisionError):
            registry.register("cid-1", make_job(), "response-2")

        assert len(registry) == 1

    def test_resolve_removes_entry(self):
        """Test resolving stores the reply and drops the entry."""
        registry = CorrelationRegistry()
        entry = registry.register("cid-1", make_job(), "response-1")

        assert registry.resolve("cid-1", {"status": "success"}) is True
        assert entry.state is EntryState.RESOLVED
        assert entry.reply == {"status": "success"}
        assert "cid-1" not in registry

    def test_resolve_twice_only_first_wins(self):
        """Test a duplicate reply cannot settle an entry again."""
        registry = CorrelationRegistry()
        entry = registry.register("cid-1", make_job(), "response-1")

        assert registry.resolve("cid-1", {"status": "success", "n": 1}) is True
        assert registry.resolve("cid-1", {"status": "success", "n": 2}) is False
        assert entry.reply["n"] == 1

    def test_resolve_unknown_id(self):
        """Test resolving an unknown id is a no-op."""
        assert CorrelationRegistry().resolve("missing", {}) is False

    def test_expire_then_resolve_fails(self):
        """Test a timed-out entry cannot be resolved."""
        registry = CorrelationRegistry()
        entry = registry.register("cid-1", make_job(), "response-1")

        assert registry.expire("cid-1") is True
        assert entry.state is EntryState.TIMED_OUT
        assert entry.timed_out_at is not None
        assert registry.resolve("cid-1", {"status": "success"}) is False
        assert "cid-1" in registry

    def test_resolve_then_expire_fails(self):
        """Test a resolved entry cannot time out."""
        registry = CorrelationRegistry()
        registry.register("cid-1", make_job(), "response-1")
        registry.resolve("cid-1", {"status": "success"})

        assert registry.expire("cid-1") is False

    def test_claim_late_once(self):
        """Test only the first claim of a timed-out entry returns it."""
        registry = CorrelationRegistry()
        registry.register("cid-1", make_job(), "response-1")
        registry.expire("cid-1")

        entry = registry.claim_late("cid-1")
        assert entry is not None
        assert entry.reply_queue == "response-1"
        assert registry.claim_late("cid-1") is None
        assert len(registry) == 0

    def test_claim_late_requires_timed_out(self):
        """Test a pending entry cannot be claimed as late."""
        registry = CorrelationRegistry()
        registry.register("cid-1", make_job(), "response-1")

        assert registry.claim_late("cid-1") is None
        assert "cid-1" in registry

    def test_clear_returns_entries(self):
        """Test clear empties the registry and hands back what it held."""
        registry = CorrelationRegistry()
        registry.register("cid-1", make_job("cid-1"), "response-1")
        registry.register("cid-2", make_job("cid-2"), "response-2")

        dropped = registry.clear()

        assert sorted(e.correlation_id for e in dropped) == ["cid-1", "cid-2"]
        assert len(registry) == 0
        assert list(registry) == []

    def test_concurrent_resolve_and_expire(self):
        """Test exactly one of resolve and expire wins under contention."""
        for round_number in range(200):
            registry = CorrelationRegistry()
            cid = f"cid-{round_number}"
            registry.register(cid, make_job(cid), "response")
            results = {}
            barrier = threading.Barrier(2)

            def do_resolve():
                barrier.wait()
                results["resolve"] = registry.resolve(cid, {"status": "success"})

            def do_expire():
                barrier.wait()
                results["expire"] = registry.expire(cid)

            threads = [
                threading.Thread(target=do_resolve),
                threading.Thread(target=do_expire),
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

            assert results["resolve"] != results["expire"]


@pytest.mark.asyncio
class TestRegistryWaiters:
    """Test waking the submitter's future."""

    async def test_resolve_wakes_waiter(self):
        """Test resolving settles the waiter on its loop."""
        registry = CorrelationRegistry()
        waiter = asyncio.get_running_loop().create_future()
        registry.register("cid-1", make_job(), "response-1", waiter=waiter)

        registry.resolve("cid-1", {"status": "success"}, malformed=False)
        entry = await asyncio.wait_for(waiter, 1.0)

        assert entry.reply == {"status": "success"}

    async def test_resolve_from_another_thread(self):
        """Test a reply delivered on a broker thread reaches the loop."""
        registry = CorrelationRegistry()
        waiter = asyncio.get_running_loop().create_future()
        registry.register("cid-1", make_job(), "response-1", waiter=waiter)

        await asyncio.to_thread(registry.resolve, "cid-1", {"status": "error"}, True)
        entry = await asyncio.wait_for(waiter, 1.0)

        assert entry.malformed is True
        assert entry.state is EntryState.RESOLVED
