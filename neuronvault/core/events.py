"""
Event Bus for NeuronVault.

Publish/subscribe channel between the engine and its consumers.
Consumers either register callbacks or iterate an async stream.

Usage:
    bus = EventBus()

    def on_progress(progress):
        print(f"{progress.completed_models}/{progress.total_models}")

    unsubscribe = bus.subscribe(EventTopic.PROGRESS, on_progress)

    async for state in bus.stream(EventTopic.CONNECTION):
        print(state.status)

    unsubscribe()
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from enum import StrEnum
from typing import Any

from loguru import logger


class EventTopic(StrEnum):
    """Topics published by the engine."""

    CONNECTION = "connection.state"
    MESSAGE = "connection.message"
    SERVER_ERROR = "connection.server_error"
    RUN_STATUS = "run.status"
    PROGRESS = "run.progress"
    MODEL_RESULT = "run.model_result"
    SYNTHESIS = "run.synthesis"
    RUN_ERROR = "run.error"
    RECOMMENDATION = "athena.recommendation"
    ATHENA_STATE = "athena.state"
    TRACE = "trace.entry"


Handler = Callable[[Any], None]

# Sentinel pushed into stream queues on close()
_CLOSED = object()


class EventBus:
    """
    In-process pub/sub manager.

    Handlers run synchronously in publish order. A failing handler is
    logged and does not prevent delivery to the others.
    """

    def __init__(self) -> None:
        self._handlers: dict[EventTopic, list[Handler]] = {}
        self._queues: dict[EventTopic, list[asyncio.Queue]] = {}
        self._published: dict[EventTopic, int] = {}

    def subscribe(self, topic: EventTopic, handler: Handler) -> Callable[[], None]:
        """
        Subscribe to a topic.

        Args:
            topic: Topic to listen for
            handler: Function called with each payload

        Returns:
            Unsubscribe function
        """
        self._handlers.setdefault(topic, []).append(handler)
        logger.debug(f"Handler subscribed to {topic.value}")

        def unsubscribe() -> None:
            handlers = self._handlers.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)
                logger.debug(f"Handler unsubscribed from {topic.value}")

        return unsubscribe

    def publish(self, topic: EventTopic, payload: Any) -> None:
        """Deliver payload to every handler and stream of the topic."""
        self._published[topic] = self._published.get(topic, 0) + 1

        for handler in list(self._handlers.get(topic, [])):
            try:
                handler(payload)
            except Exception as e:
                logger.error(f"❌ Event handler for {topic.value} failed: {e}")

        for queue in self._queues.get(topic, []):
            queue.put_nowait(payload)

    def stream(self, topic: EventTopic) -> AsyncIterator[Any]:
        """
        Iterate payloads published on a topic from now on.

        The stream is registered when this is called, not on the first
        iteration, so payloads published before the consumer starts are
        buffered. Ends when close() is called.
        """
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.setdefault(topic, []).append(queue)
        return self._drain(topic, queue)

    async def _drain(self, topic: EventTopic, queue: asyncio.Queue) -> AsyncIterator[Any]:
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            self._queues[topic].remove(queue)

    def close(self) -> None:
        """Terminate all open streams."""
        for queues in self._queues.values():
            for queue in queues:
                queue.put_nowait(_CLOSED)

    def published_count(self, topic: EventTopic) -> int:
        """Number of payloads published on a topic."""
        return self._published.get(topic, 0)

    def subscriber_count(self, topic: EventTopic) -> int:
        return len(self._handlers.get(topic, [])) + len(self._queues.get(topic, []))
