"""
NeuronVault Orchestration - Strategy executors.

The strategy set is closed: STRATEGY_EXECUTORS maps every Strategy to
the coroutine that drives its call topology.

- parallel / consensus: every model at once, done when all returned
- adaptive: best candidate for the prompt category first, next one only
  if it failed, done at the first success
- cascade: one model after another by weight, each prompt carrying the
  previous successful answer as context
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field

from loguru import logger

from neuronvault.config import constants
from neuronvault.core.exceptions import ConnectivityError, ModelCallError, ModelTimeoutError
from neuronvault.core.types import FailureCause, HealthStatus, PromptCategory, Strategy
from neuronvault.orchestration.backends import ModelBackend
from neuronvault.orchestration.models import ModelResult, OrchestrationRequest
from neuronvault.registry.models import ModelSnapshot


@dataclass
class RunContext:
    """Everything an executor needs for one run."""

    request: OrchestrationRequest
    backend: ModelBackend
    call_timeout: float
    on_result: Callable[[ModelResult], None]
    call_order: list[str]
    in_flight: set[str] = field(default_factory=set)

    async def call(self, model: str, context: str | None = None, attempt: int = 0) -> ModelResult:
        """
        Call one model under the per-call timeout.

        Never raises for call failures: they become failed results. Only
        cancellation propagates, in which case nothing is reported.
        """
        self.in_flight.add(model)
        started = time.perf_counter()

        try:
            async with asyncio.timeout(self.call_timeout):
                reply = await self.backend.call(model, self.request.prompt, context)
        except TimeoutError:
            timeout = ModelTimeoutError(model, self.call_timeout)
            logger.warning(f"⏱️ {timeout.message}")
            result = ModelResult.failed(
                model,
                timeout.cause,
                timeout.reason,
                latency_ms=_elapsed_ms(started),
                attempt=attempt,
            )
        except ModelCallError as e:
            logger.warning(f"⚠️ {e.message}")
            result = ModelResult.failed(
                model, e.cause, e.reason, latency_ms=_elapsed_ms(started), attempt=attempt
            )
        except ConnectivityError as e:
            logger.warning(f"🔌 Model '{model}' lost its connection: {e.message}")
            result = ModelResult.failed(
                model,
                FailureCause.CONNECTION,
                e.message,
                latency_ms=_elapsed_ms(started),
                attempt=attempt,
            )
        except Exception as e:
            logger.error(f"❌ Model '{model}' call raised {type(e).__name__}: {e}")
            result = ModelResult.failed(
                model,
                FailureCause.BACKEND,
                f"{type(e).__name__}: {e}",
                latency_ms=_elapsed_ms(started),
                attempt=attempt,
            )
        else:
            confidence = (
                reply.confidence
                if reply.confidence is not None
                else constants.DEFAULT_RESULT_CONFIDENCE
            )
            result = ModelResult.succeeded(
                model,
                reply.content,
                confidence,
                latency_ms=_elapsed_ms(started),
                attempt=attempt,
                prompt_tokens=reply.prompt_tokens,
                completion_tokens=reply.completion_tokens,
                cost=reply.cost,
            )

        self.in_flight.discard(model)
        self.on_result(result)
        return result


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


# ============================================================================
# Call ordering
# ============================================================================


def cascade_order(request: OrchestrationRequest) -> list[str]:
    """Weight descending; equal weights keep request order."""
    indexed = list(enumerate(request.models))
    indexed.sort(key=lambda pair: (-request.weight(pair[1]), pair[0]))
    return [model for _, model in indexed]


def capability_order(
    models: tuple[str, ...],
    snapshots: Mapping[str, ModelSnapshot],
    category: PromptCategory,
) -> list[str]:
    """Capability for the category descending; unhealthy models last; ties keep request order."""
    indexed = list(enumerate(models))
    indexed.sort(
        key=lambda pair: (
            snapshots[pair[1]].status == HealthStatus.UNHEALTHY,
            -snapshots[pair[1]].capability(category),
            pair[0],
        )
    )
    return [model for _, model in indexed]


def heuristic_category(prompt: str) -> PromptCategory:
    """Prompt category from the keyword analyzer."""
    # Imported here: the athena package depends on orchestration
    from neuronvault.athena.analyzer import PromptAnalyzer

    return PromptAnalyzer().analyze(prompt).category


def plan_call_order(
    request: OrchestrationRequest,
    snapshots: Mapping[str, ModelSnapshot],
    category_resolver: Callable[[str], PromptCategory] = heuristic_category,
) -> list[str]:
    if request.strategy == Strategy.CASCADE:
        return cascade_order(request)
    if request.strategy == Strategy.ADAPTIVE:
        category = request.category or category_resolver(request.prompt)
        order = capability_order(request.models, snapshots, category)
        logger.debug(f"🎯 Adaptive order for '{category.value}': {order}")
        return order
    return list(request.models)


# ============================================================================
# Executors
# ============================================================================


async def execute_parallel(ctx: RunContext) -> None:
    await asyncio.gather(*(ctx.call(model) for model in ctx.call_order))


async def execute_consensus(ctx: RunContext) -> None:
    # Same dispatch as parallel; clustering happens at synthesis
    await execute_parallel(ctx)


async def execute_adaptive(ctx: RunContext) -> None:
    for attempt, model in enumerate(ctx.call_order):
        result = await ctx.call(model, attempt=attempt)
        if result.success:
            return
        logger.info(f"🔄 Adaptive: '{model}' failed, trying next candidate")


async def execute_cascade(ctx: RunContext) -> None:
    previous: str | None = None
    for attempt, model in enumerate(ctx.call_order):
        result = await ctx.call(model, context=previous, attempt=attempt)
        if result.success:
            previous = result.content


STRATEGY_EXECUTORS: dict[Strategy, Callable[[RunContext], Awaitable[None]]] = {
    Strategy.PARALLEL: execute_parallel,
    Strategy.CONSENSUS: execute_consensus,
    Strategy.ADAPTIVE: execute_adaptive,
    Strategy.CASCADE: execute_cascade,
}
