"""
Unit tests for the change broadcaster.

Tests cover:
- Welcome message on connect
- Fan-out to every observer
- Global ordering under concurrent publishers
- Disconnect and stale observer cleanup
- Dropping observers that fall too far behind
"""

import asyncio

import pytest

from broadcaster import WELCOME_EVENT, ChangeBroadcaster


async def drain(observer, count):
    return [await asyncio.wait_for(observer.next_message(), timeout=2) for _ in range(count)]


class TestChangeBroadcaster:
    """Tests for ChangeBroadcaster."""

    @pytest.fixture
    def broadcaster(self):
        return ChangeBroadcaster()

    @pytest.mark.asyncio
    async def test_welcome_is_first_message(self, broadcaster):
        observer = broadcaster.connect()
        broadcaster.publish("categoryUpdated", {"name": "Shoes"})

        welcome, event = await drain(observer, 2)

        assert welcome["event"] == WELCOME_EVENT
        assert "message" in welcome["data"]
        assert event["event"] == "categoryUpdated"

    @pytest.mark.asyncio
    async def test_welcome_only_goes_to_new_observer(self, broadcaster):
        first = broadcaster.connect()
        await drain(first, 1)

        broadcaster.connect()

        assert first.queue.empty()

    @pytest.mark.asyncio
    async def test_publish_reaches_every_observer(self, broadcaster):
        observers = [broadcaster.connect() for _ in range(3)]

        delivered = broadcaster.publish("newOrder", {"orderNumber": "1001"})

        assert delivered == 3
        for observer in observers:
            _, event = await drain(observer, 2)
            assert event["data"] == {"orderNumber": "1001"}

    def test_publish_without_observers(self, broadcaster):
        assert broadcaster.publish("faqUpdated", {"title": "Q"}) == 0

    @pytest.mark.asyncio
    async def test_late_observer_gets_no_replay(self, broadcaster):
        broadcaster.publish("categoryUpdated", {"name": "Old"})
        observer = broadcaster.connect()
        broadcaster.publish("categoryUpdated", {"name": "New"})

        welcome, event = await drain(observer, 2)

        assert event["data"] == {"name": "New"}
        assert observer.queue.empty()

    @pytest.mark.asyncio
    async def test_disconnect_stops_delivery(self, broadcaster):
        observer = broadcaster.connect()
        broadcaster.disconnect(observer)
        broadcaster.disconnect(observer)

        assert broadcaster.publish("categoryDeleted", {}) == 0
        assert broadcaster.observer_count == 0

    def test_observer_on_closed_loop_is_dropped(self, broadcaster):
        loop = asyncio.new_event_loop()
        loop.close()
        broadcaster.connect(loop=loop)

        assert broadcaster.publish("productUpdated", {"name": "Runner"}) == 0
        assert broadcaster.observer_count == 0

    @pytest.mark.asyncio
    async def test_concurrent_publishers_share_one_order(self, broadcaster):
        """Every observer sees the same global sequence, in ascending order."""
        a = broadcaster.connect()
        b = broadcaster.connect()

        def publish_many(worker):
            for i in range(25):
                broadcaster.publish("productUpdated", {"worker": worker, "i": i})

        await asyncio.gather(*(asyncio.to_thread(publish_many, w) for w in range(4)))

        seen_a = [m["sequence"] for m in (await drain(a, 101))[1:]]
        seen_b = [m["sequence"] for m in (await drain(b, 101))[1:]]
        assert seen_a == seen_b
        assert seen_a == sorted(seen_a)
        assert len(set(seen_a)) == 100

    @pytest.mark.asyncio
    async def test_lagging_observer_is_dropped(self):
        broadcaster = ChangeBroadcaster(max_pending=3)
        observer = broadcaster.connect()

        results = [broadcaster.publish("productUpdated", {"i": i}) for i in range(3)]

        assert results == [1, 1, 0]
        assert broadcaster.observer_count == 0
        welcome, first, second, end = await drain(observer, 4)
        assert welcome["event"] == WELCOME_EVENT
        assert [first["data"], second["data"]] == [{"i": 0}, {"i": 1}]
        assert end is None

    @pytest.mark.asyncio
    async def test_draining_frees_backlog(self):
        broadcaster = ChangeBroadcaster(max_pending=2)
        observer = broadcaster.connect()

        for i in range(5):
            assert broadcaster.publish("productUpdated", {"i": i}) == 1
            await drain(observer, 1)

        assert broadcaster.observer_count == 1
