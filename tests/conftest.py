"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import pytest

from neuronvault.config.models import OrchestrationConfig, TransportConfig
from neuronvault.core.events import EventBus, EventTopic
from neuronvault.core.exceptions import ConnectRefusedError
from neuronvault.core.metrics import reset_metrics
from neuronvault.orchestration.backends import ModelReply
from neuronvault.orchestration.engine import OrchestrationEngine
from neuronvault.registry.loader import load_registry
from neuronvault.registry.registry import ModelRegistry
from neuronvault.transport.link import TransportLink

# Use pytest-asyncio's built-in event loop management
# See: https://pytest-asyncio.readthedocs.io/en/latest/concepts.html
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(autouse=True)
def _clean_metrics() -> None:
    reset_metrics()


# ============================================================================
# In-memory WebSocket
# ============================================================================


class FakeConnection:
    """In-memory WebSocketConnection.

    `responder` is called with every decoded frame the client sends and
    may return a reply (dict) that is queued back to the client.
    """

    def __init__(self, responder: Callable[[dict], dict | None] | None = None) -> None:
        self.sent: list[dict] = []
        self.inbox: asyncio.Queue[str | None] = asyncio.Queue()
        self.responder = responder
        self.fail_sends = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, data: str) -> None:
        if self._closed or self.fail_sends:
            raise ConnectionResetError("socket closed")
        message = json.loads(data)
        self.sent.append(message)
        if self.responder is not None:
            reply = self.responder(message)
            if reply is not None:
                self.push(reply)

    async def receive(self) -> str | None:
        return await self.inbox.get()

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            self.inbox.put_nowait(None)

    def push(self, message: dict | str) -> None:
        """Deliver a frame to the client."""
        self.inbox.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self) -> None:
        """Simulate the peer going away."""
        self._closed = True
        self.inbox.put_nowait(None)

    def sent_types(self) -> list[str]:
        return [m["type"] for m in self.sent]


def echo_responder(message: dict) -> dict | None:
    """Answers pings and model requests the way the backend does."""
    request_id = message.get("request_id")
    if message["type"] == "ping":
        return {"type": "pong", "data": {}, "request_id": request_id}
    if message["type"] == "model_request":
        model = message["data"]["model_name"]
        return {
            "type": "individual_response",
            "data": {"model": model, "content": f"{model} says hi", "confidence": 0.9},
            "request_id": request_id,
        }
    return None


class FakeConnector:
    """Connector that hands out FakeConnections, or fails on demand."""

    def __init__(self, responder: Callable[[dict], dict | None] | None = echo_responder) -> None:
        self.responder = responder
        self.urls: list[str] = []
        self.connections: list[FakeConnection] = []
        self.failures: list[Exception] = []

    def fail_next(self, *errors: Exception) -> None:
        self.failures.extend(errors)

    def refuse_next(self, count: int = 1) -> None:
        for _ in range(count):
            self.failures.append(ConnectRefusedError("ws://test", "connection refused"))

    async def open(self, url: str, timeout: float) -> FakeConnection:
        self.urls.append(url)
        if self.failures:
            raise self.failures.pop(0)
        connection = FakeConnection(self.responder)
        self.connections.append(connection)
        return connection

    @property
    def last(self) -> FakeConnection:
        return self.connections[-1]


# ============================================================================
# Scripted model backend
# ============================================================================


@dataclass
class Script:
    content: str | None = None
    confidence: float | None = 0.8
    delay: float = 0.0
    error: Exception | None = None
    hang: bool = False


class FakeBackend:
    """ModelBackend scripted per model."""

    def __init__(self) -> None:
        self.scripts: dict[str, Script] = {}
        self.calls: list[tuple[str, str, str | None]] = []
        self.cancelled: list[str] = []

    def script(self, model: str, **kwargs: Any) -> None:
        self.scripts[model] = Script(**kwargs)

    @property
    def called_models(self) -> list[str]:
        return [model for model, _, _ in self.calls]

    async def call(self, model: str, prompt: str, context: str | None = None) -> ModelReply:
        self.calls.append((model, prompt, context))
        script = self.scripts.get(model, Script())
        try:
            if script.hang:
                await asyncio.Event().wait()
            if script.delay:
                await asyncio.sleep(script.delay)
        except asyncio.CancelledError:
            self.cancelled.append(model)
            raise
        if script.error is not None:
            raise script.error
        content = script.content if script.content is not None else f"Answer from {model}."
        return ModelReply(content=content, confidence=script.confidence)


class EventRecorder:
    """Records every payload published on a bus, in order."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[tuple[EventTopic, Any]] = []
        self._unsubscribers = [
            bus.subscribe(topic, lambda payload, t=topic: self.events.append((t, payload)))
            for topic in EventTopic
        ]

    def of(self, topic: EventTopic) -> list[Any]:
        return [payload for t, payload in self.events if t == topic]

    def topics(self) -> list[EventTopic]:
        return [t for t, _ in self.events]

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus: EventBus) -> EventRecorder:
    return EventRecorder(bus)


@pytest.fixture
def registry() -> ModelRegistry:
    """Registry loaded from the builtin catalog."""
    return load_registry()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def orchestration_config() -> OrchestrationConfig:
    return OrchestrationConfig(call_timeout=0.2, run_timeout=2.0)


@pytest.fixture
def engine(
    registry: ModelRegistry,
    backend: FakeBackend,
    bus: EventBus,
    orchestration_config: OrchestrationConfig,
) -> OrchestrationEngine:
    return OrchestrationEngine(registry, backend, bus, config=orchestration_config)


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def transport_config() -> TransportConfig:
    """Fast reconnects, no background probing during tests."""
    return TransportConfig(
        host="localhost",
        port=8080,
        probe_interval=60,
        probe_timeout=0.5,
        max_reconnect_attempts=3,
        backoff_base=0.01,
        backoff_cap=0.05,
        backoff_jitter=False,
    )


@pytest.fixture
def link(transport_config: TransportConfig, bus: EventBus, connector: FakeConnector) -> TransportLink:
    return TransportLink(transport_config, bus, connector)


async def wait_for(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Poll until predicate() holds."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)
