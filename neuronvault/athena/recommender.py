"""
NeuronVault Athena - Recommender.

Scores every registered model against a prompt analysis, selects a
subset with diminishing returns, and picks a strategy from a fixed
decision table.

Per-model score:

    base  = 0.6 * capability_match + 0.25 * complexity_fit
          + 0.1 * reliability + 0.05 * cost_efficiency
    live  = base * health_score
    final = 0.7 * live + 0.3 * learned_score   (learned_score when known)

Selection walks models by final score. The k-th model's marginal gain is

    gain_k = s_k * prod_{i<k} (1 - redundancy * s_i)

and it is included while gain_k exceeds the cutoff.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping

from loguru import logger

from neuronvault.athena.models import ModelScore, PromptAnalysis, Recommendation
from neuronvault.athena.performance import PerformanceTracker
from neuronvault.config import constants
from neuronvault.config.models import AthenaConfig
from neuronvault.core.exceptions import ScoringError
from neuronvault.core.types import ComplexityTier, Strategy
from neuronvault.registry.models import ModelSnapshot
from neuronvault.registry.registry import ModelRegistry

# Score weights
CATEGORY_WEIGHT = 0.6
COMPLEXITY_WEIGHT = 0.25
RELIABILITY_WEIGHT = 0.1
COST_WEIGHT = 0.05

# Strategy decision table: (complexity, selected count bucket) -> strategy
# Count buckets: 1, 2, 3 or more
STRATEGY_TABLE: dict[tuple[ComplexityTier, int], Strategy] = {
    (ComplexityTier.SIMPLE, 1): Strategy.ADAPTIVE,
    (ComplexityTier.SIMPLE, 2): Strategy.CONSENSUS,
    (ComplexityTier.SIMPLE, 3): Strategy.CONSENSUS,
    (ComplexityTier.MODERATE, 1): Strategy.ADAPTIVE,
    (ComplexityTier.MODERATE, 2): Strategy.PARALLEL,
    (ComplexityTier.MODERATE, 3): Strategy.PARALLEL,
    (ComplexityTier.COMPLEX, 1): Strategy.ADAPTIVE,
    (ComplexityTier.COMPLEX, 2): Strategy.CASCADE,
    (ComplexityTier.COMPLEX, 3): Strategy.PARALLEL,
    (ComplexityTier.EXPERT, 1): Strategy.ADAPTIVE,
    (ComplexityTier.EXPERT, 2): Strategy.CASCADE,
    (ComplexityTier.EXPERT, 3): Strategy.ADAPTIVE,
}

STRATEGY_REASONS: dict[Strategy, str] = {
    Strategy.PARALLEL: "all models answer at once and the strongest answer leads",
    Strategy.CONSENSUS: "short prompts benefit from cross-checking agreement",
    Strategy.ADAPTIVE: "the best-suited model answers, others only as fallback",
    Strategy.CASCADE: "each model refines the previous answer",
}


def table_strategy(complexity: ComplexityTier, count: int) -> Strategy:
    return STRATEGY_TABLE[(complexity, min(max(count, 1), 3))]


class Recommender:
    """
    Turns a PromptAnalysis into a Recommendation.

    Example:
        >>> recommender = Recommender()
        >>> rec = recommender.recommend(PromptAnalyzer().analyze(prompt), registry)
        >>> rec.models, rec.strategy, rec.overall_confidence
    """

    def __init__(
        self,
        config: AthenaConfig | None = None,
        performance: PerformanceTracker | None = None,
        redundancy: float = constants.ENSEMBLE_REDUNDANCY,
    ) -> None:
        self.config = config or AthenaConfig()
        self.performance = performance or PerformanceTracker()
        self.redundancy = redundancy

    def recommend(
        self,
        analysis: PromptAnalysis,
        registry: ModelRegistry | Mapping[str, ModelSnapshot],
    ) -> Recommendation:
        """
        Recommend models, strategy and weights.

        Raises:
            ScoringError: If no model is registered or none scores above zero.
        """
        snapshots = registry.snapshot() if isinstance(registry, ModelRegistry) else registry
        if not snapshots:
            raise ScoringError("no models registered")

        reasoning = [
            f"Category {analysis.category.value} ({analysis.complexity.value}), "
            f"analysis certainty {analysis.certainty:.2f}"
        ]
        if not analysis.in_taxonomy:
            reasoning.append("Prompt is outside the known categories, scores are generic")

        order = {name: i for i, name in enumerate(snapshots)}
        scored = sorted(
            (self._score(analysis, snap) for snap in snapshots.values()),
            key=lambda s: (-s.final_score, order[s.model]),
        )
        if scored[0].final_score <= 0:
            raise ScoringError("every model scored zero", {"models": list(snapshots)})

        # Unhealthy models are only candidates when nothing else is
        available = [s for s in scored if snapshots[s.model].is_available] or scored
        selected, final_scores = self._select(available, scored, snapshots, reasoning)

        strategy = self._strategy(analysis, selected, reasoning)

        total = sum(s.final_score for s in selected)
        weights = {s.model: round(s.final_score / total, 4) for s in selected}
        confidences = {s.model: round(s.final_score, 4) for s in selected}
        models = tuple(s.model for s in selected)

        recommendation = Recommendation(
            recommendation_id=f"rec_{uuid.uuid4().hex[:10]}",
            analysis=analysis,
            models=models,
            strategy=strategy,
            weights=weights,
            model_confidences=confidences,
            scores=tuple(final_scores),
            reasoning=tuple(reasoning),
            estimated_time_s=self._estimated_time(strategy, models, snapshots),
            auto_apply_threshold=self.config.auto_apply_threshold,
        )
        recommendation = recommendation.model_copy(
            update={
                "reasoning": recommendation.reasoning
                + (
                    f"Overall confidence {recommendation.overall_confidence:.2f} "
                    f"(auto-apply at {self.config.auto_apply_threshold:.2f})",
                )
            }
        )
        logger.info(
            f"🎯 Recommendation: {strategy.value} over {list(models)} "
            f"(confidence {recommendation.overall_confidence:.2f})"
        )
        return recommendation

    def _score(self, analysis: PromptAnalysis, snap: ModelSnapshot) -> ModelScore:
        match = sum(
            share * snap.capability(category)
            for category, share in analysis.capability_vector.items()
        )
        fit = snap.complexity_fit(analysis.complexity)
        base = (
            CATEGORY_WEIGHT * match
            + COMPLEXITY_WEIGHT * fit
            + RELIABILITY_WEIGHT * snap.reliability
            + COST_WEIGHT * snap.cost_efficiency
        )
        live = base * snap.health_score

        learned = self.performance.model_score(snap.name) if self.config.learning_enabled else None
        if learned is None:
            final = live
        else:
            blend = constants.PERFORMANCE_BLEND
            final = (1 - blend) * live + blend * learned

        return ModelScore(
            model=snap.name,
            capability_match=round(match, 4),
            complexity_fit=fit,
            base_score=round(base, 4),
            health_score=round(snap.health_score, 4),
            performance=None if learned is None else round(learned, 4),
            final_score=round(min(1.0, max(0.0, final)), 4),
        )

    def _select(
        self,
        candidates: list[ModelScore],
        scored: list[ModelScore],
        snapshots: Mapping[str, ModelSnapshot],
        reasoning: list[str],
    ) -> tuple[list[ModelScore], list[ModelScore]]:
        selected: list[ModelScore] = []
        decided: dict[str, ModelScore] = {}
        uncovered = 1.0
        cutoff = self.config.marginal_gain_cutoff

        for score in candidates:
            gain = score.final_score * uncovered
            if not selected:
                reason = f"top score {score.final_score:.2f} for this prompt"
                include = True
            elif len(selected) >= self.config.max_models:
                reason = f"limit of {self.config.max_models} models reached"
                include = False
            elif gain > cutoff:
                reason = f"adds {gain:.2f} (score {score.final_score:.2f})"
                include = True
            else:
                reason = f"adds only {gain:.2f}, below the {cutoff:.2f} cutoff"
                include = False

            decided[score.model] = score.model_copy(
                update={"marginal_gain": round(gain, 4), "selected": include, "reason": reason}
            )
            if include:
                selected.append(decided[score.model])
                uncovered *= 1 - self.redundancy * score.final_score
                reasoning.append(f"Included {score.model}: {reason}")
            else:
                reasoning.append(f"Excluded {score.model}: {reason}")

        for score in scored:
            if score.model not in decided:
                status = snapshots[score.model].status.value
                decided[score.model] = score.model_copy(update={"reason": f"model is {status}"})
                reasoning.append(f"Excluded {score.model}: model is {status}")

        return selected, [decided[s.model] for s in scored]

    def _strategy(
        self,
        analysis: PromptAnalysis,
        selected: list[ModelScore],
        reasoning: list[str],
    ) -> Strategy:
        strategy = table_strategy(analysis.complexity, len(selected))
        reason = STRATEGY_REASONS[strategy]

        if len(selected) > 1 and self.config.learning_enabled:
            learned = self._learned_strategy(strategy)
            if learned is not None:
                strategy, reason = learned

        reasoning.append(f"Strategy {strategy.value}: {reason}")
        return strategy

    def _learned_strategy(self, base: Strategy) -> tuple[Strategy, str] | None:
        """Override the table when history shows it underperforming."""
        tracker = self.performance
        min_samples = constants.STRATEGY_MIN_SAMPLES

        base_rate = tracker.strategy_success_rate(base)
        if base_rate is None or tracker.strategy_samples(base) < min_samples or base_rate >= 0.5:
            return None

        rates = {
            s: rate
            for s in Strategy
            if s != base
            and tracker.strategy_samples(s) >= min_samples
            and (rate := tracker.strategy_success_rate(s)) is not None
            and rate > constants.STRATEGY_SUCCESS_QUALITY
        }
        if not rates:
            return None

        best = max(rates, key=lambda s: rates[s])
        return best, (
            f"{base.value} succeeded in {base_rate:.0%} of recent runs, "
            f"{best.value} in {rates[best]:.0%}"
        )

    @staticmethod
    def _estimated_time(
        strategy: Strategy,
        models: tuple[str, ...],
        snapshots: Mapping[str, ModelSnapshot],
    ) -> float:
        times = [snapshots[m].avg_response_time for m in models]
        if strategy == Strategy.CASCADE:
            return round(sum(times), 3)
        if strategy == Strategy.ADAPTIVE:
            return round(times[0], 3)
        return round(max(times), 3)
