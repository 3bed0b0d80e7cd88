"""
Unit tests for the per-conversation subscription manager.
Tests reconcile idempotence, failure handling and teardown.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from batchat.core.exceptions import StoreUnavailableError
from batchat.core.subscriptions import SubscriptionManager, last_message_path


@pytest.fixture
def events():
    return []


@pytest.fixture
def manager(memory_store, events):
    return SubscriptionManager(memory_store, lambda cid, value: events.append((cid, value)))


class TestReconcile:
    """Tests for SubscriptionManager.reconcile."""

    @pytest.mark.asyncio
    async def test_opens_requested(self, manager, memory_store):
        result = await manager.reconcile({"c1", "c2"})

        assert result.opened == {"c1", "c2"}
        assert manager.open_ids == {"c1", "c2"}
        assert memory_store.listener_count == 2

    @pytest.mark.asyncio
    async def test_same_set_twice_is_noop(self, manager, memory_store):
        await manager.reconcile({"c1", "c2"})

        result = await manager.reconcile(["c2", "c1"])

        assert not result.changed
        assert memory_store.listener_count == 2

    @pytest.mark.asyncio
    async def test_second_reconcile_makes_no_store_calls(self):
        store = MagicMock()
        handles = {}

        async def subscribe(path, callback):
            handles[path] = MagicMock()
            return handles[path]

        store.subscribe = AsyncMock(side_effect=subscribe)
        manager = SubscriptionManager(store, lambda cid, value: None)

        await manager.reconcile({"c1", "c2"})
        await manager.reconcile({"c1", "c2"})

        assert store.subscribe.await_count == 2
        for handle in handles.values():
            handle.cancel.assert_not_called()

    @pytest.mark.asyncio
    async def test_diff_opens_and_closes(self, manager, memory_store):
        await manager.reconcile({"c1", "c2"})

        result = await manager.reconcile({"c2", "c3"})

        assert result.opened == {"c3"}
        assert result.closed == {"c1"}
        assert manager.open_ids == {"c2", "c3"}
        assert memory_store.listener_count == 2

    @pytest.mark.asyncio
    async def test_events_forwarded_with_id(self, manager, memory_store, events):
        await manager.reconcile({"c1"})

        await memory_store.set(last_message_path("c1"), {"text": "hi"})

        assert events == [("c1", None), ("c1", {"text": "hi"})]

    @pytest.mark.asyncio
    async def test_closed_subscription_stops_events(self, manager, memory_store, events):
        await manager.reconcile({"c1"})
        await manager.reconcile(set())

        await memory_store.set(last_message_path("c1"), {"text": "late"})

        assert events == [("c1", None)]

    @pytest.mark.asyncio
    async def test_failed_open_is_retried_next_time(self, events):
        store = MagicMock()
        handle = MagicMock()
        store.subscribe = AsyncMock(side_effect=[StoreUnavailableError("down")] * 3 + [handle])
        manager = SubscriptionManager(store, lambda cid, value: events.append(cid))

        first = await manager.reconcile({"c1"})
        second = await manager.reconcile({"c1"})

        assert first.failed == {"c1"}
        assert first.opened == set()
        assert second.opened == {"c1"}
        assert manager.open_ids == {"c1"}

    @pytest.mark.asyncio
    async def test_retry_attempts_override(self, events):
        store = MagicMock()
        store.subscribe = AsyncMock(side_effect=StoreUnavailableError("down"))
        manager = SubscriptionManager(store, lambda cid, value: None, retry_attempts=1)

        result = await manager.reconcile({"c1"})

        assert result.failed == {"c1"}
        assert store.subscribe.await_count == 1

    @pytest.mark.asyncio
    async def test_superseded_open_is_cancelled(self, memory_store):
        """A slower reconcile must not resurrect an id a newer one dropped."""
        manager = SubscriptionManager(memory_store, lambda cid, value: None)
        original_subscribe = memory_store.subscribe

        async def subscribe_then_drop(path, callback):
            handle = await original_subscribe(path, callback)
            manager._desired = set()
            return handle

        memory_store.subscribe = subscribe_then_drop

        result = await manager.reconcile({"c1"})

        assert result.opened == set()
        assert manager.open_ids == set()
        assert memory_store.listener_count == 0


class TestTeardown:
    """Tests for SubscriptionManager.teardown."""

    @pytest.mark.asyncio
    async def test_teardown_closes_everything(self, manager, memory_store):
        await manager.reconcile({"c1", "c2"})

        manager.teardown()

        assert manager.open_ids == frozenset()
        assert memory_store.listener_count == 0

    @pytest.mark.asyncio
    async def test_teardown_twice(self, manager, memory_store):
        await manager.reconcile({"c1"})

        manager.teardown()
        manager.teardown()

        assert memory_store.listener_count == 0

    def test_teardown_before_reconcile(self, manager):
        manager.teardown()

        assert manager.open_ids == frozenset()

    @pytest.mark.asyncio
    async def test_events_after_teardown_ignored(self, manager, memory_store, events):
        await manager.reconcile({"c1"})
        forwarder = manager._forwarder("c1")

        manager.teardown()
        forwarder({"text": "stray"})

        assert events == [("c1", None)]
