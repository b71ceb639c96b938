"""
NeuronVault Athena - Analysis and recommendation models.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field

from neuronvault.core.types import ComplexityTier, PromptCategory, Strategy


class PromptAnalysis(BaseModel):
    """What a prompt is about and how hard it is."""

    model_config = ConfigDict(frozen=True)

    prompt: str
    category: PromptCategory
    complexity: ComplexityTier
    capability_vector: dict[PromptCategory, float] = Field(
        description="Required capability share per category, sums to 1"
    )
    secondary_categories: tuple[PromptCategory, ...] = ()
    certainty: float = Field(ge=0, le=1, description="Confidence in the analysis itself")
    in_taxonomy: bool = Field(default=True, description="False when no category signal was found")
    word_count: int = 0
    sentence_count: int = 0
    question_count: int = 0
    specialized: bool = False
    reasoning: tuple[str, ...] = ()
    analysis_time_ms: float = 0.0

    def summary(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "complexity": self.complexity.value,
            "secondary_categories": [c.value for c in self.secondary_categories],
            "capability_vector": {c.value: round(v, 4) for c, v in self.capability_vector.items()},
            "certainty": self.certainty,
        }


class ModelScore(BaseModel):
    """Scoring breakdown for one registered model."""

    model_config = ConfigDict(frozen=True)

    model: str
    capability_match: float
    complexity_fit: float
    base_score: float
    health_score: float
    performance: float | None = None
    final_score: float
    marginal_gain: float = 0.0
    selected: bool = False
    reason: str = ""


class Recommendation(BaseModel):
    """
    Athena's proposed models, strategy and weights for a prompt.

    `overall_confidence` is derived: the weight-averaged per-model
    confidence combined with the analysis certainty by geometric mean.
    """

    model_config = ConfigDict(frozen=True)

    recommendation_id: str
    analysis: PromptAnalysis
    models: tuple[str, ...]
    strategy: Strategy
    weights: dict[str, float]
    model_confidences: dict[str, float]
    scores: tuple[ModelScore, ...] = ()
    reasoning: tuple[str, ...] = ()
    estimated_time_s: float = 0.0
    auto_apply_threshold: float = 0.8
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def overall_confidence(self) -> float:
        total = sum(self.weights.get(m, 0.0) for m in self.models)
        if not self.models or total <= 0:
            return 0.0
        mean = sum(self.weights[m] * self.model_confidences[m] for m in self.models) / total
        return round((mean * self.analysis.certainty) ** 0.5, 4)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def auto_apply_recommended(self) -> bool:
        return self.overall_confidence >= self.auto_apply_threshold

    @property
    def category(self) -> PromptCategory:
        return self.analysis.category

    def to_dict(self) -> dict[str, Any]:
        """Flat form for events and the CLI."""
        return {
            "recommendation_id": self.recommendation_id,
            "analysis": self.analysis.summary(),
            "models": list(self.models),
            "strategy": self.strategy.value,
            "weights": dict(self.weights),
            "model_confidences": dict(self.model_confidences),
            "overall_confidence": self.overall_confidence,
            "reasoning": list(self.reasoning),
            "estimated_time_s": self.estimated_time_s,
            "auto_apply_recommended": self.auto_apply_recommended,
            "timestamp": self.timestamp.isoformat(),
        }
