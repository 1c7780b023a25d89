"""Tests for best-effort event fan-out."""

import asyncio

import pytest

from openworld.engine_spine.broadcaster import EventBroadcaster
from openworld.engine_spine.stream import format_sse_event


class TestSubscribers:
    def test_publish_reaches_subscribers_in_order(self):
        broadcaster = EventBroadcaster()
        received = []
        broadcaster.subscribe(received.append)

        broadcaster.publish("engine.status", {"stage": "checking"})
        broadcaster.publish("engine.status", {"stage": "ready"})

        assert [e["payload"]["stage"] for e in received] == ["checking", "ready"]
        assert [e["sequence_number"] for e in received] == [1, 2]
        assert received[0]["event_type"] == "engine.status"

    def test_failing_subscriber_is_skipped(self):
        """One broken subscriber neither raises nor starves the others."""
        broadcaster = EventBroadcaster()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        broadcaster.subscribe(broken)
        broadcaster.subscribe(received.append)

        delivered = broadcaster.publish("chat.token", {"content": "x"})

        assert delivered == 1
        assert len(received) == 1

    def test_unsubscribe(self):
        broadcaster = EventBroadcaster()
        received = []
        unsubscribe = broadcaster.subscribe(received.append)

        unsubscribe()
        unsubscribe()
        broadcaster.publish("engine.status", {})

        assert received == []

    def test_publish_without_listeners(self):
        assert EventBroadcaster().publish("engine.status", {}) == 0


class TestConnections:
    @pytest.mark.asyncio
    async def test_connection_receives_events(self):
        broadcaster = EventBroadcaster()
        connection = broadcaster.add_connection()

        broadcaster.publish("model.pull_progress", {"status": "success"})
        events = broadcaster.get_events(connection, timeout=0.1)
        event = await asyncio.wait_for(events.__anext__(), timeout=1.0)

        assert event["payload"] == {"status": "success"}
        assert connection.last_sequence == 1
        await events.aclose()

    def test_connection_ids_are_generated(self):
        broadcaster = EventBroadcaster()
        first = broadcaster.add_connection()
        second = broadcaster.add_connection()

        assert first.id != second.id
        assert broadcaster.get_connection_count() == 2

        broadcaster.remove_connection(first.id)
        assert broadcaster.get_connection_count() == 1
        assert first.is_closed

    def test_full_connection_is_disconnected(self):
        broadcaster = EventBroadcaster()
        connection = broadcaster.add_connection()
        connection.queue = asyncio.Queue(maxsize=1)

        assert broadcaster.publish("chat.token", {"n": 1}) == 1
        assert broadcaster.publish("chat.token", {"n": 2}) == 0
        assert connection.is_closed
        assert broadcaster.get_connection_count() == 0


class TestSseFormat:
    def test_format(self):
        text = format_sse_event(
            {"event_type": "engine.status", "sequence_number": 7, "payload": {"stage": "ready"}}
        )
        assert text == 'event: engine.status\nid: 7\ndata: {"stage": "ready"}\n\n'
