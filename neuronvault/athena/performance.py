"""
NeuronVault Athena - Performance learning.

Keeps bounded score histories per model and per strategy, fed from
finished runs. A model's learned score is the mean of its recent
quality samples; a strategy's success rate is the share of its recent
runs whose quality exceeded the success bar.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Any

from loguru import logger

from neuronvault.config import constants
from neuronvault.core.types import FailureCause, RunStatus, Strategy

if TYPE_CHECKING:
    from neuronvault.orchestration.models import OrchestrationRun


class PerformanceTracker:
    """Learned model scores and strategy success rates."""

    def __init__(
        self,
        history_limit: int = constants.PERFORMANCE_HISTORY_LIMIT,
        success_quality: float = constants.STRATEGY_SUCCESS_QUALITY,
    ) -> None:
        self.history_limit = history_limit
        self.success_quality = success_quality
        self._models: dict[str, deque[float]] = {}
        self._strategies: dict[Strategy, deque[float]] = {}

    def record_run(self, run: OrchestrationRun) -> None:
        """
        Learn from a finished run.

        Each result contributes its confidence on success and 0.0 on
        failure. The run's quality is its synthesized confidence scaled by
        the share of calls that succeeded, or 0.0 if it failed.
        Cancelled runs teach nothing.
        """
        if run.status not in (RunStatus.COMPLETED, RunStatus.ERROR):
            return

        for result in run.results:
            if result.cause == FailureCause.CANCELLED:
                continue
            self._push(self._models, result.model, result.confidence if result.success else 0.0)

        total = len(run.results)
        if run.status == RunStatus.COMPLETED and run.confidence is not None and total:
            quality = run.confidence * len(run.succeeded) / total
        else:
            quality = 0.0
        self._push(self._strategies, run.strategy, quality)
        logger.debug(
            f"📈 Learned from {run.run_id}: {run.strategy.value} quality {quality:.2f}"
        )

    def _push(self, table: dict, key: Any, value: float) -> None:
        history = table.get(key)
        if history is None:
            history = table[key] = deque(maxlen=self.history_limit)
        history.append(value)

    def model_score(self, model: str) -> float | None:
        """Mean recent quality, None without history."""
        history = self._models.get(model)
        if not history:
            return None
        return sum(history) / len(history)

    def model_samples(self, model: str) -> int:
        return len(self._models.get(model, ()))

    def strategy_success_rate(self, strategy: Strategy) -> float | None:
        history = self._strategies.get(strategy)
        if not history:
            return None
        return sum(1 for q in history if q > self.success_quality) / len(history)

    def strategy_samples(self, strategy: Strategy) -> int:
        return len(self._strategies.get(strategy, ()))

    def clear(self) -> None:
        self._models.clear()
        self._strategies.clear()

    def to_dict(self) -> dict[str, Any]:
        return {
            "model_scores": {
                m: round(s, 4) for m in self._models if (s := self.model_score(m)) is not None
            },
            "strategy_success_rates": {
                s.value: round(r, 4)
                for s in self._strategies
                if (r := self.strategy_success_rate(s)) is not None
            },
            "runs_learned": sum(len(h) for h in self._strategies.values()),
        }
