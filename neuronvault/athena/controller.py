"""
NeuronVault Athena - Controller.

State machine:

    disabled -> idle -> analyzing -> recommending -> ready -> applying -> idle
                             \\             \\                    \\-> error
                              \\-> error     \\-> error

Failures never leak into a running orchestration: they move Athena to
`error`, are published and traced, and re-raised to the caller.
`retry_from_error()` repeats the failed step.
"""

from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from loguru import logger

from neuronvault.athena.analyzer import PromptAnalyzer
from neuronvault.athena.models import Recommendation
from neuronvault.athena.performance import PerformanceTracker
from neuronvault.athena.recommender import Recommender
from neuronvault.config import constants
from neuronvault.config.models import AthenaConfig
from neuronvault.core.events import EventBus, EventTopic
from neuronvault.core.exceptions import (
    AnalysisError,
    AthenaDisabledError,
    AthenaError,
    InvalidConfigError,
    NoRecommendationError,
    ScoringError,
)
from neuronvault.core.metrics import track_recommendation
from neuronvault.core.types import AthenaState, PromptCategory, RunStatus
from neuronvault.trace.decision_trace import DecisionTrace, TraceKind
from neuronvault.utils.logger import log_prefix

if TYPE_CHECKING:
    from neuronvault.orchestration.engine import OrchestrationEngine
    from neuronvault.orchestration.models import OrchestrationRun
    from neuronvault.registry.registry import ModelRegistry

TRACE_SOURCE = "athena"

# Recent categories inspected for the usage trend
TREND_WINDOW = 5


@dataclass(frozen=True)
class AthenaStateEvent:
    state: AthenaState
    previous: AthenaState
    error: str | None = None


class Athena:
    """
    Recommendation subsystem controller.

    Example:
        >>> athena = Athena(engine, registry, bus, trace, AthenaConfig(enabled=True))
        >>> rec = await athena.analyze_prompt("Compare B-trees and LSM trees")
        >>> run = await athena.apply_recommendation()
    """

    def __init__(
        self,
        engine: OrchestrationEngine,
        registry: ModelRegistry,
        bus: EventBus | None = None,
        trace: DecisionTrace | None = None,
        config: AthenaConfig | None = None,
        analyzer: PromptAnalyzer | None = None,
        performance: PerformanceTracker | None = None,
    ) -> None:
        self.engine = engine
        self.registry = registry
        self.bus = bus or engine.bus
        self.trace = trace or DecisionTrace(self.bus)
        self.config = config or AthenaConfig()
        self.analyzer = analyzer or PromptAnalyzer()
        self.performance = performance or PerformanceTracker()
        self.recommender = Recommender(self.config, self.performance)

        self._state = AthenaState.IDLE if self.config.enabled else AthenaState.DISABLED
        self._current: Recommendation | None = None
        self._last_error: str | None = None
        self._failed_step: str | None = None
        self._last_prompt: str | None = None
        self._history: deque[Recommendation] = deque(
            maxlen=constants.RECOMMENDATION_HISTORY_LIMIT
        )
        self._category_usage: Counter[PromptCategory] = Counter()
        self._recent_categories: deque[PromptCategory] = deque(
            maxlen=constants.RECENT_CATEGORIES_LIMIT
        )
        self._unsubscribe_runs = engine.on_run_finished(self._learn)
        logger.debug(f"{log_prefix('🧠')} Athena initialized ({self._state.value})")

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> AthenaState:
        return self._state

    @property
    def enabled(self) -> bool:
        return self._state != AthenaState.DISABLED

    @property
    def auto_apply(self) -> bool:
        return self.config.auto_apply

    @property
    def auto_apply_threshold(self) -> float:
        return self.config.auto_apply_threshold

    @property
    def current_recommendation(self) -> Recommendation | None:
        return self._current

    @property
    def last_error(self) -> str | None:
        return self._last_error

    def _set_state(self, state: AthenaState, error: str | None = None) -> None:
        previous = self._state
        if previous == state and error is None:
            return
        self._state = state
        logger.debug(f"{log_prefix('🧠')} Athena: {previous.value} -> {state.value}")
        self.bus.publish(EventTopic.ATHENA_STATE, AthenaStateEvent(state, previous, error))

    def _fail(self, step: str, error: AthenaError) -> None:
        self._last_error = error.message
        self._failed_step = step
        logger.error(f"{log_prefix('❌')} Athena {step} failed: {error}")
        self.trace.record(
            TraceKind.ERROR, TRACE_SOURCE, f"{step} failed: {error.message}", error.details
        )
        self._set_state(AthenaState.ERROR, error.message)

    def _require_enabled(self, operation: str) -> None:
        if not self.enabled:
            raise AthenaDisabledError(operation)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def toggle_enabled(self, enabled: bool | None = None) -> bool:
        """Enable or disable Athena (flip when `enabled` is None)."""
        target = (not self.enabled) if enabled is None else enabled
        if target == self.enabled:
            return target

        self.config = self.config.model_copy(update={"enabled": target})
        self.recommender.config = self.config
        self._set_state(AthenaState.IDLE if target else AthenaState.DISABLED)
        self.trace.record(
            TraceKind.STATE, TRACE_SOURCE, f"Athena {'enabled' if target else 'disabled'}"
        )
        logger.info(f"{log_prefix('🧠')} Athena {'enabled' if target else 'disabled'}")
        return target

    def toggle_auto_apply(self, enabled: bool | None = None) -> bool:
        """Enable or disable auto-apply (flip when `enabled` is None)."""
        target = (not self.auto_apply) if enabled is None else enabled
        self.config = self.config.model_copy(update={"auto_apply": target})
        self.recommender.config = self.config
        logger.info(f"{log_prefix('🧠')} Auto-apply {'on' if target else 'off'}")
        return target

    def set_auto_apply_threshold(self, threshold: float) -> None:
        """
        Raises:
            InvalidConfigError: If threshold is outside [0, 1].
        """
        if not 0.0 <= threshold <= 1.0:
            raise InvalidConfigError(
                "athena.auto_apply_threshold", f"{threshold} is outside [0, 1]"
            )
        self.config = self.config.model_copy(update={"auto_apply_threshold": threshold})
        self.recommender.config = self.config
        logger.info(f"{log_prefix('🧠')} Auto-apply threshold set to {threshold:.2f}")

    # ------------------------------------------------------------------
    # Analysis and application
    # ------------------------------------------------------------------

    async def analyze_prompt(self, prompt: str) -> Recommendation:
        """
        Analyze a prompt and produce a recommendation.

        Auto-applies it when auto-apply is on, its overall confidence
        reaches the threshold and no run is active.

        Raises:
            AthenaDisabledError: When Athena is disabled.
            AnalysisError: Analysis failed (Athena is left in `error`).
            ScoringError: Scoring failed (Athena is left in `error`).
        """
        self._require_enabled("analyze_prompt")
        self._last_prompt = prompt

        self._set_state(AthenaState.ANALYZING)
        try:
            analysis = self.analyzer.analyze(prompt)
        except AnalysisError as e:
            self._fail("analysis", e)
            raise
        except Exception as e:
            error = AnalysisError(f"{type(e).__name__}: {e}")
            self._fail("analysis", error)
            raise error from e

        self.trace.record(
            TraceKind.ANALYSIS,
            TRACE_SOURCE,
            "; ".join(analysis.reasoning),
            analysis.summary(),
        )

        self._set_state(AthenaState.RECOMMENDING)
        try:
            recommendation = self.recommender.recommend(analysis, self.registry)
        except ScoringError as e:
            self._fail("scoring", e)
            raise
        except Exception as e:
            error = ScoringError(f"{type(e).__name__}: {e}")
            self._fail("scoring", error)
            raise error from e

        self._remember(recommendation)
        self._set_state(AthenaState.READY)
        self.bus.publish(EventTopic.RECOMMENDATION, recommendation)

        auto_applied = await self._maybe_auto_apply(recommendation)
        track_recommendation(
            recommendation.strategy.value, recommendation.overall_confidence, auto_applied
        )
        return recommendation

    async def _maybe_auto_apply(self, recommendation: Recommendation) -> bool:
        confidence = recommendation.overall_confidence
        threshold = self.auto_apply_threshold

        if not self.auto_apply:
            return False
        if confidence < threshold:
            message = f"Auto-apply skipped: confidence {confidence:.2f} < threshold {threshold:.2f}"
        elif self.engine.is_running:
            message = "Auto-apply skipped: a run is active"
        else:
            logger.info(f"{log_prefix('⚡')} Auto-applying {recommendation.recommendation_id}")
            await self.apply_recommendation(recommendation)
            return True

        logger.debug(f"{log_prefix('🧠')} {message}")
        self.trace.record(TraceKind.APPLY, TRACE_SOURCE, message)
        return False

    async def apply_recommendation(
        self, recommendation: Recommendation | None = None
    ) -> OrchestrationRun:
        """
        Submit a recommendation (default: the current one) to the engine.

        Raises:
            AthenaDisabledError: When Athena is disabled.
            NoRecommendationError: Nothing to apply.
            InvalidRequestError: The engine rejected it (Athena is left in `error`).
        """
        self._require_enabled("apply_recommendation")
        recommendation = recommendation or self._current
        if recommendation is None:
            raise NoRecommendationError()

        self._current = recommendation
        self._set_state(AthenaState.APPLYING)
        try:
            run = await self.engine.submit(
                prompt=recommendation.analysis.prompt,
                models=recommendation.models,
                strategy=recommendation.strategy,
                weights=recommendation.weights,
                category=recommendation.category,
            )
        except Exception as e:
            self._fail("apply", AthenaError(f"submit failed: {e}", {"error": type(e).__name__}))
            raise

        self.trace.record(
            TraceKind.APPLY,
            TRACE_SOURCE,
            f"Applied {recommendation.recommendation_id} as {run.run_id}",
            {"run_id": run.run_id, "recommendation_id": recommendation.recommendation_id},
        )
        self._last_error = None
        self._failed_step = None
        self._set_state(AthenaState.IDLE)
        return run

    async def retry_from_error(self) -> Recommendation | None:
        """
        Leave `error` by repeating the failed step.

        An analysis or scoring failure re-analyzes the last prompt. An apply
        failure returns to `ready` with the same recommendation so it can
        be applied again.
        """
        if self._state != AthenaState.ERROR:
            logger.debug(f"{log_prefix('🧠')} retry_from_error called outside the error state")
            return self._current

        step = self._failed_step
        self._last_error = None
        self._failed_step = None
        logger.info(f"{log_prefix('🔄')} Athena retrying {step}")

        if step == "apply" and self._current is not None:
            self._set_state(AthenaState.READY)
            return self._current

        if self._last_prompt is None:
            self._set_state(AthenaState.IDLE)
            return None
        return await self.analyze_prompt(self._last_prompt)

    def clear_history(self) -> None:
        """Forget recommendations, usage stats, learned performance and the trace."""
        self._history.clear()
        self._category_usage.clear()
        self._recent_categories.clear()
        self.performance.clear()
        self.trace.clear()
        self._current = None
        self._last_error = None
        self._failed_step = None
        if self.enabled:
            self._set_state(AthenaState.IDLE)
        logger.info(f"{log_prefix('🧹')} Athena history cleared")

    # ------------------------------------------------------------------
    # Learning and insights
    # ------------------------------------------------------------------

    def _remember(self, recommendation: Recommendation) -> None:
        self._current = recommendation
        self._history.append(recommendation)
        self._category_usage[recommendation.category] += 1
        self._recent_categories.append(recommendation.category)

        for score in recommendation.scores:
            self.trace.record(
                TraceKind.SELECTION,
                TRACE_SOURCE,
                f"{'Included' if score.selected else 'Excluded'} {score.model}: {score.reason}",
                {"model": score.model, "score": score.final_score, "selected": score.selected},
            )
        strategy_line = next(
            (line for line in recommendation.reasoning if line.startswith("Strategy ")),
            f"Strategy {recommendation.strategy.value}",
        )
        self.trace.record(TraceKind.STRATEGY, TRACE_SOURCE, strategy_line)
        self.trace.record(
            TraceKind.RECOMMENDATION,
            TRACE_SOURCE,
            f"Recommended {recommendation.strategy.value} over "
            f"{', '.join(recommendation.models)} "
            f"(confidence {recommendation.overall_confidence:.2f})",
            recommendation.to_dict(),
        )

    def _learn(self, run: OrchestrationRun) -> None:
        if not self.config.learning_enabled:
            return
        self.performance.record_run(run)
        outcome = "completed" if run.status == RunStatus.COMPLETED else "failed"
        self.trace.record(
            TraceKind.RUN,
            TRACE_SOURCE,
            f"Learned from {run.run_id} ({run.strategy.value}, {outcome})",
            {"run_id": run.run_id, "confidence": run.confidence},
        )

    def history(self) -> list[Recommendation]:
        return list(self._history)

    def recent_categories(self) -> list[PromptCategory]:
        return list(self._recent_categories)

    @property
    def average_confidence(self) -> float:
        if not self._history:
            return 0.0
        return sum(r.overall_confidence for r in self._history) / len(self._history)

    def recent_trend(self) -> str:
        """focused, balanced or diverse over the last few prompts."""
        if len(self._recent_categories) < TREND_WINDOW:
            return "insufficient_data"
        distinct = len(set(list(self._recent_categories)[-TREND_WINDOW:]))
        if distinct == 1:
            return "focused"
        if distinct >= 4:
            return "diverse"
        return "balanced"

    def usage_insights(self) -> dict[str, Any]:
        total = sum(self._category_usage.values())
        if total == 0:
            return {
                "total_prompts": 0,
                "most_used_category": None,
                "category_distribution": {},
                "efficiency_score": 0.0,
                "recent_trend": self.recent_trend(),
            }

        most_used, _ = self._category_usage.most_common(1)[0]
        return {
            "total_prompts": total,
            "most_used_category": most_used.value,
            "category_distribution": {
                c.value: round(n / total, 4) for c, n in self._category_usage.items()
            },
            "efficiency_score": round(min(100.0, self.average_confidence * 100), 2),
            "recent_trend": self.recent_trend(),
        }

    def analytics(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "enabled": self.enabled,
            "auto_apply_enabled": self.auto_apply,
            "auto_apply_threshold": self.auto_apply_threshold,
            "recommendations": len(self._history),
            "category_usage": {c.value: n for c, n in self._category_usage.items()},
            "recent_categories": [c.value for c in self._recent_categories],
            "average_confidence": round(self.average_confidence, 4),
            "has_current_recommendation": self._current is not None,
            "last_error": self._last_error,
            "performance": self.performance.to_dict(),
            "trace_entries": len(self.trace),
        }

    def close(self) -> None:
        """Stop learning from the engine."""
        self._unsubscribe_runs()
