"""Tests for the event bus."""

from __future__ import annotations

import asyncio

import pytest

from neuronvault.core.events import EventBus, EventTopic


class TestEventBus:
    """Tests for pub/sub delivery."""

    def test_publish_reaches_handlers_in_order(self):
        bus = EventBus()
        seen: list[tuple[str, object]] = []
        bus.subscribe(EventTopic.PROGRESS, lambda p: seen.append(("first", p)))
        bus.subscribe(EventTopic.PROGRESS, lambda p: seen.append(("second", p)))

        bus.publish(EventTopic.PROGRESS, 1)

        assert seen == [("first", 1), ("second", 1)]
        assert bus.published_count(EventTopic.PROGRESS) == 1

    def test_topics_are_isolated(self):
        bus = EventBus()
        seen: list[object] = []
        bus.subscribe(EventTopic.SYNTHESIS, seen.append)

        bus.publish(EventTopic.PROGRESS, "ignored")

        assert seen == []

    def test_unsubscribe(self):
        bus = EventBus()
        seen: list[object] = []
        unsubscribe = bus.subscribe(EventTopic.TRACE, seen.append)

        unsubscribe()
        unsubscribe()
        bus.publish(EventTopic.TRACE, "entry")

        assert seen == []
        assert bus.subscriber_count(EventTopic.TRACE) == 0

    def test_failing_handler_does_not_block_others(self):
        bus = EventBus()
        seen: list[object] = []

        def broken(_payload):
            raise ValueError("handler bug")

        bus.subscribe(EventTopic.RUN_ERROR, broken)
        bus.subscribe(EventTopic.RUN_ERROR, seen.append)

        bus.publish(EventTopic.RUN_ERROR, "boom")

        assert seen == ["boom"]

    @pytest.mark.asyncio
    async def test_stream_until_close(self):
        bus = EventBus()
        received: list[object] = []

        async def consume() -> None:
            async for item in bus.stream(EventTopic.CONNECTION):
                received.append(item)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        assert bus.subscriber_count(EventTopic.CONNECTION) == 1

        bus.publish(EventTopic.CONNECTION, "connecting")
        bus.publish(EventTopic.CONNECTION, "connected")
        bus.close()
        await asyncio.wait_for(task, 1.0)

        assert received == ["connecting", "connected"]
        assert bus.subscriber_count(EventTopic.CONNECTION) == 0

    @pytest.mark.asyncio
    async def test_stream_buffers_payloads_before_first_iteration(self):
        bus = EventBus()
        stream = bus.stream(EventTopic.RUN_STATUS)
        assert bus.subscriber_count(EventTopic.RUN_STATUS) == 1

        bus.publish(EventTopic.RUN_STATUS, "dispatching")
        bus.publish(EventTopic.RUN_STATUS, "collecting")
        bus.close()

        received = [item async for item in stream]

        assert received == ["dispatching", "collecting"]
        assert bus.subscriber_count(EventTopic.RUN_STATUS) == 0
