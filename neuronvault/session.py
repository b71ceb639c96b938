"""
NeuronVault Session.

One session wires every component together: configuration, event bus,
transport link, model registry, orchestration engine, Athena and the
decision trace. Consumers subscribe to its topics and invoke its
commands; nothing here is a process-wide singleton.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Callable, Iterable, Mapping
from typing import Any

from neuronvault.athena.controller import Athena
from neuronvault.athena.models import Recommendation
from neuronvault.config.loader import get_config
from neuronvault.config.models import NeuronVaultConfig
from neuronvault.core.events import EventBus, EventTopic
from neuronvault.core.types import PromptCategory, Strategy
from neuronvault.orchestration.backends import ModelBackend, TransportModelBackend
from neuronvault.orchestration.engine import OrchestrationEngine
from neuronvault.orchestration.models import OrchestrationRun
from neuronvault.registry.loader import discover_registry, load_registry
from neuronvault.registry.registry import ModelRegistry
from neuronvault.synthesis.synthesizer import Synthesizer
from neuronvault.trace.decision_trace import DecisionTrace
from neuronvault.transport.connectors import Connector
from neuronvault.transport.link import TransportLink
from neuronvault.transport.state import ConnectionState, ConnectResult
from neuronvault.utils.logger import get_session_logger, log_prefix


class NeuronVaultSession:
    """
    Session facade.

    Example:
        >>> session = NeuronVaultSession()
        >>> await session.connect("localhost", 8080)
        >>> session.subscribe(EventTopic.PROGRESS, print)
        >>> run = await session.submit("Explain CRDTs", ["claude", "gpt"])
        >>> run = await session.wait(run.run_id)
        >>> await session.close()
    """

    def __init__(
        self,
        config: NeuronVaultConfig | None = None,
        *,
        registry: ModelRegistry | None = None,
        backend: ModelBackend | None = None,
        connector: Connector | None = None,
        bus: EventBus | None = None,
        session_id: str | None = None,
    ) -> None:
        """
        Build a session.

        Args:
            config: Configuration (defaults to the cached global config).
            registry: Preloaded registry (defaults to the configured catalog).
            backend: Model backend (defaults to calls over the transport link).
            connector: WebSocket connector for the link (tests inject fakes).
            bus: Event bus shared by every component.
            session_id: Identifier bound to log records.
        """
        self.config = config or get_config()
        self.session_id = session_id or uuid.uuid4().hex[:8]
        self.bus = bus or EventBus()

        self.link = TransportLink(self.config.transport, self.bus, connector)
        self.registry = registry or load_registry(self.config.registry, self.config.health)
        self.synthesizer = Synthesizer(
            similarity_threshold=self.config.orchestration.consensus_similarity
        )
        self.engine = OrchestrationEngine(
            self.registry,
            backend or TransportModelBackend(self.link),
            self.bus,
            synthesizer=self.synthesizer,
            config=self.config.orchestration,
        )
        self.trace = DecisionTrace(self.bus)
        self.athena = Athena(
            self.engine,
            self.registry,
            self.bus,
            self.trace,
            self.config.athena,
        )
        self._closed = False
        self.log = get_session_logger(self.session_id)
        self.log.debug(
            f"{log_prefix('🚀')} Session {self.session_id} ready with {len(self.registry)} model(s)"
        )

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, topic: EventTopic, handler: Callable[[Any], None]) -> Callable[[], None]:
        """Subscribe to a topic. Returns an unsubscribe function."""
        return self.bus.subscribe(topic, handler)

    def stream(self, topic: EventTopic) -> AsyncIterator[Any]:
        return self.bus.stream(topic)

    @property
    def connection_state(self) -> ConnectionState:
        return self.link.state

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self, host: str | None = None, port: int | None = None) -> ConnectResult:
        """
        Connect the transport link.

        With a dynamic registry source, the catalog is refreshed from the
        backend once connected.
        """
        result = await self.link.connect(host, port)
        if result.success and not result.already_connected:
            if self.config.registry.source == "dynamic":
                count = await discover_registry(self.link, self.registry)
                if count:
                    self.log.info(f"📚 Discovered {count} model(s) from the backend")
        return result

    async def disconnect(self) -> None:
        await self.link.disconnect()

    async def reconnect(self) -> ConnectResult:
        return await self.link.reconnect()

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    async def submit(
        self,
        prompt: str,
        models: Iterable[str],
        strategy: Strategy | str = Strategy.PARALLEL,
        weights: Mapping[str, float] | None = None,
        conversation_id: str | None = None,
        category: PromptCategory | None = None,
    ) -> OrchestrationRun:
        """
        Start a run, cancelling any active one.

        Raises:
            InvalidRequestError: On invalid input.
        """
        return await self.engine.submit(
            prompt=prompt,
            models=models,
            strategy=strategy,
            weights=weights,
            conversation_id=conversation_id,
            category=category,
        )

    async def cancel(self) -> bool:
        return await self.engine.cancel()

    async def wait(self, run_id: str | None = None) -> OrchestrationRun | None:
        return await self.engine.wait(run_id)

    # ------------------------------------------------------------------
    # Athena
    # ------------------------------------------------------------------

    async def recommend(self, prompt: str) -> Recommendation:
        return await self.athena.analyze_prompt(prompt)

    def toggle_athena(self, enabled: bool | None = None) -> bool:
        return self.athena.toggle_enabled(enabled)

    def toggle_auto_apply(self, enabled: bool | None = None) -> bool:
        return self.athena.toggle_auto_apply(enabled)

    def set_auto_apply_threshold(self, threshold: float) -> None:
        self.athena.set_auto_apply_threshold(threshold)

    async def apply_recommendation(
        self, recommendation: Recommendation | None = None
    ) -> OrchestrationRun:
        return await self.athena.apply_recommendation(recommendation)

    async def retry_athena(self) -> Recommendation | None:
        return await self.athena.retry_from_error()

    def clear_athena_history(self) -> None:
        self.athena.clear_history()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        active = self.engine.active_run
        return {
            "session_id": self.session_id,
            "connection": self.link.state.to_dict(),
            "registry": self.registry.get_stats(),
            "active_run": active.run_id if active else None,
            "runs": len(self.engine.history()),
            "athena": self.athena.analytics(),
        }

    async def close(self) -> None:
        """Cancel the active run, disconnect and end all streams."""
        if self._closed:
            return
        self._closed = True
        await self.engine.cancel()
        self.athena.close()
        await self.link.disconnect()
        self.bus.close()
        self.log.debug(f"{log_prefix('✅')} Session {self.session_id} closed")

    async def __aenter__(self) -> NeuronVaultSession:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
