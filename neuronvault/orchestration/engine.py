"""
NeuronVault Orchestration - Engine.

Drives one run at a time through:

    idle -> dispatching -> collecting -> synthesizing -> completed
                     \\            \\              \\-> error
                      \\-> cancelled \\-> cancelled

A new submit() or cancel() moves the active run to `cancelled`; results
that were still in flight are discarded and never published.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from functools import partial

from loguru import logger

from neuronvault.config.models import OrchestrationConfig
from neuronvault.core.events import EventBus, EventTopic
from neuronvault.core.exceptions import NoViableResultsError
from neuronvault.core.metrics import timing, track_model_call, track_run
from neuronvault.core.types import FailureCause, PromptCategory, RunStatus, Strategy
from neuronvault.orchestration.backends import ModelBackend
from neuronvault.orchestration.models import (
    ModelResult,
    ModelResultEvent,
    OrchestrationRequest,
    OrchestrationRun,
    RunErrorEvent,
    RunProgress,
    RunStatusEvent,
    SynthesisEvent,
)
from neuronvault.orchestration.strategies import (
    STRATEGY_EXECUTORS,
    RunContext,
    heuristic_category,
    plan_call_order,
)
from neuronvault.registry.registry import ModelRegistry
from neuronvault.synthesis.synthesizer import Synthesizer
from neuronvault.utils.logger import log_prefix

# Share of overall progress reached when collection is complete
_COLLECT_SHARE = 0.9

RunCallback = Callable[[OrchestrationRun], None]


class OrchestrationEngine:
    """
    Orchestration engine, one instance per session.

    Example:
        >>> engine = OrchestrationEngine(registry, TransportModelBackend(link), bus)
        >>> run = await engine.submit(prompt="Explain CRDTs", models=["claude", "gpt"])
        >>> run = await engine.wait(run.run_id)
        >>> print(run.synthesized)
    """

    def __init__(
        self,
        registry: ModelRegistry,
        backend: ModelBackend,
        bus: EventBus | None = None,
        synthesizer: Synthesizer | None = None,
        config: OrchestrationConfig | None = None,
        category_resolver: Callable[[str], PromptCategory] = heuristic_category,
    ) -> None:
        self.registry = registry
        self.backend = backend
        self.bus = bus or EventBus()
        self.config = config or OrchestrationConfig()
        self.synthesizer = synthesizer or Synthesizer(
            similarity_threshold=self.config.consensus_similarity
        )
        self.category_resolver = category_resolver

        self._active: OrchestrationRun | None = None
        self._active_task: asyncio.Task | None = None
        self._tasks: dict[str, asyncio.Task] = {}
        self._history: deque[OrchestrationRun] = deque(maxlen=self.config.history_limit)
        self._finished_callbacks: list[RunCallback] = []
        self._lock = asyncio.Lock()
        logger.debug(f"{log_prefix('🚀')} OrchestrationEngine initialized")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def active_run(self) -> OrchestrationRun | None:
        """The run in progress, None once it reaches a terminal state."""
        if self._active is None or self._active.status.is_terminal:
            return None
        return self._active

    @property
    def is_running(self) -> bool:
        return self.active_run is not None

    def history(self) -> list[OrchestrationRun]:
        """Finished runs, oldest first."""
        return list(self._history)

    def get_run(self, run_id: str) -> OrchestrationRun | None:
        if self._active is not None and self._active.run_id == run_id:
            return self._active
        return next((run for run in self._history if run.run_id == run_id), None)

    def on_run_finished(self, callback: RunCallback) -> Callable[[], None]:
        """
        Register a callback for runs reaching completed or error.

        Returns:
            Unsubscribe function
        """
        self._finished_callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._finished_callbacks:
                self._finished_callbacks.remove(callback)

        return unsubscribe

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def submit(
        self,
        request: OrchestrationRequest | None = None,
        *,
        prompt: str | None = None,
        models: Iterable[str] | None = None,
        strategy: Strategy | str = Strategy.PARALLEL,
        weights: Mapping[str, float] | None = None,
        conversation_id: str | None = None,
        category: PromptCategory | None = None,
    ) -> OrchestrationRun:
        """
        Start a run, cancelling the active one.

        Either pass a prepared request or the individual fields.

        Raises:
            InvalidRequestError: Empty prompt, empty or unknown model set, bad
                weights. Raised before any state change.
        """
        if request is None:
            request = OrchestrationRequest.create(
                prompt or "",
                models or (),
                strategy=strategy,
                weights=weights,
                conversation_id=conversation_id,
                category=category,
            )
        snapshots = {s.name: s for s in self.registry.require(request.models)}

        async with self._lock:
            await self._cancel_active("superseded by a new submit")

            run = OrchestrationRun(request=request)
            call_order = plan_call_order(request, snapshots, self.category_resolver)
            self._active = run
            self._transition(run, RunStatus.DISPATCHING)

            task = asyncio.create_task(
                self._execute(run, call_order), name=f"neuronvault-{run.run_id}"
            )
            self._active_task = task
            self._tasks[run.run_id] = task
            task.add_done_callback(lambda _t, rid=run.run_id: self._tasks.pop(rid, None))

        logger.info(
            f"{log_prefix('🚀')} Submitted {run.run_id}: {request.strategy.value} over {list(request.models)}"
        )
        return run

    async def cancel(self) -> bool:
        """
        Cancel the active run.

        Returns:
            True if a run was cancelled.
        """
        async with self._lock:
            if not self.is_running:
                return False
            await self._cancel_active("cancelled by caller")
            return True

    async def wait(self, run_id: str | None = None) -> OrchestrationRun | None:
        """Wait for a run (default: the active one) to reach a terminal state."""
        if run_id is None:
            run = self._active
            task = self._active_task
        else:
            run = self.get_run(run_id)
            task = self._tasks.get(run_id)

        if task is not None and not task.done():
            await asyncio.wait([task])
        return run

    async def _cancel_active(self, reason: str) -> None:
        """Caller holds the lock."""
        run, task = self._active, self._active_task
        if run is None or run.status.is_terminal:
            return

        logger.info(f"{log_prefix('🚫')} Cancelling {run.run_id}: {reason}")
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])

        # A task cancelled before its first step never ran its own handler
        if not run.status.is_terminal:
            self._finish(run, RunStatus.CANCELLED)

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    async def _execute(self, run: OrchestrationRun, call_order: list[str]) -> None:
        request = run.request
        ctx = RunContext(
            request=request,
            backend=self.backend,
            call_timeout=self.config.call_timeout,
            on_result=partial(self._accept_result, run),
            call_order=call_order,
        )
        executor = STRATEGY_EXECUTORS[request.strategy]

        try:
            self._transition(run, RunStatus.COLLECTING)
            self._publish_progress(run)

            try:
                async with asyncio.timeout(self.config.run_timeout):
                    await executor(ctx)
            except TimeoutError:
                logger.warning(
                    f"{log_prefix('⏱️')} {run.run_id} hit the {self.config.run_timeout}s run timeout, "
                    f"{len(ctx.in_flight)} call(s) still pending"
                )
                for model in [m for m in call_order if m in ctx.in_flight]:
                    ctx.in_flight.discard(model)
                    self._accept_result(
                        run,
                        ModelResult.failed(
                            model,
                            FailureCause.TIMEOUT,
                            f"run timeout after {self.config.run_timeout}s",
                            attempt=call_order.index(model),
                        ),
                    )

            self._synthesize(run)

        except asyncio.CancelledError:
            if not run.status.is_terminal:
                self._finish(run, RunStatus.CANCELLED)
            raise
        except Exception as e:
            logger.error(f"{log_prefix('❌')} {run.run_id} failed unexpectedly: {type(e).__name__}: {e}")
            if not run.status.is_terminal:
                self._fail(run, f"internal error: {e}", {})

    def _accept_result(self, run: OrchestrationRun, result: ModelResult) -> None:
        if run is not self._active or run.status.is_terminal:
            logger.debug(f"{log_prefix('🗑️')} Discarding late result from '{result.model}' for {run.run_id}")
            return

        run.results.append(result)

        if result.success:
            self.registry.record_success(
                result.model,
                result.latency_ms,
                prompt_tokens=result.prompt_tokens,
                completion_tokens=result.completion_tokens,
                cost=result.cost,
            )
            track_model_call(result.model, result.latency_ms / 1000, "success")
        else:
            cause = result.cause or FailureCause.BACKEND
            self.registry.record_failure(result.model, cause, result.error, result.latency_ms)
            track_model_call(result.model, result.latency_ms / 1000, cause.value)

        self.bus.publish(EventTopic.MODEL_RESULT, ModelResultEvent(run.run_id, result))
        self._publish_progress(run)

    def _synthesize(self, run: OrchestrationRun) -> None:
        self._transition(run, RunStatus.SYNTHESIZING)
        self._publish_progress(run)

        try:
            with timing(f"synthesis {run.run_id}"):
                outcome = self.synthesizer.synthesize(
                    run.results, run.request.effective_weights, run.strategy
                )
        except NoViableResultsError as e:
            logger.error(f"{log_prefix('❌')} {run.run_id}: {e.message}")
            self._fail(run, e.message, e.errors)
            return

        run.outcome = outcome
        self._finish(run, RunStatus.COMPLETED)
        self._publish_progress(run)

        # Always the last event of a completed run
        self.bus.publish(
            EventTopic.SYNTHESIS,
            SynthesisEvent(
                run_id=run.run_id,
                text=outcome.text,
                confidence=outcome.confidence,
                contributing_models=outcome.contributing_models,
                is_partial=run.is_partial,
                outcome=outcome,
            ),
        )
        self._notify_finished(run)

    def _fail(self, run: OrchestrationRun, error: str, errors: Mapping[str, str]) -> None:
        run.error = error
        run.errors = dict(errors)
        self._finish(run, RunStatus.ERROR)
        self.bus.publish(EventTopic.RUN_ERROR, RunErrorEvent(run.run_id, error, dict(errors)))
        self._notify_finished(run)

    def _finish(self, run: OrchestrationRun, status: RunStatus) -> None:
        run.ended_at = datetime.now(UTC)
        self._transition(run, status)
        self._history.append(run)
        track_run(run.strategy.value, status.value, run.duration_seconds)
        logger.info(run.to_summary())

    def _notify_finished(self, run: OrchestrationRun) -> None:
        for callback in list(self._finished_callbacks):
            try:
                callback(run)
            except Exception as e:
                logger.error(f"{log_prefix('❌')} Run-finished callback failed for {run.run_id}: {e}")

    def _transition(self, run: OrchestrationRun, status: RunStatus) -> None:
        previous = run.status
        run.status = status
        logger.debug(f"{log_prefix('🔄')} {run.run_id}: {previous.value} -> {status.value}")
        self.bus.publish(
            EventTopic.RUN_STATUS,
            RunStatusEvent(run.run_id, status, previous, run.error),
        )

    def _publish_progress(self, run: OrchestrationRun) -> None:
        total = len(run.request.models)
        completed = len(run.results)

        if run.status == RunStatus.COMPLETED:
            overall = 1.0
        elif run.status == RunStatus.SYNTHESIZING:
            overall = _COLLECT_SHARE
        else:
            overall = _COLLECT_SHARE * completed / total if total else 0.0

        self.bus.publish(
            EventTopic.PROGRESS,
            RunProgress(
                run_id=run.run_id,
                completed_models=completed,
                total_models=total,
                phase=run.status,
                overall_progress=round(overall, 4),
                successful_models=len(run.succeeded),
                failed_models=len(run.failed),
            ),
        )
