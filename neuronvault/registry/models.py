"""
NeuronVault Registry - Data models.

ModelProfile is the static catalog entry (validated with pydantic).
ModelHealth and ModelUsage are the live counters the registry mutates.
ModelSnapshot is the immutable copy handed to everyone else.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType

from pydantic import BaseModel, Field, field_validator

from neuronvault.config import constants
from neuronvault.core.types import ComplexityTier, FailureCause, HealthStatus, PromptCategory


class ModelProfile(BaseModel):
    """Catalog entry for a model.

    Example YAML:
        name: claude
        display_name: Claude
        provider: anthropic
        capabilities:
          reasoning: 0.92
          coding: 0.88
        complexity_handling:
          complex: 0.95
        reliability: 0.94
    """

    name: str = Field(min_length=1, description="Unique model name")
    display_name: str = Field(default="", description="Human-readable name")
    provider: str = Field(default="", description="Vendor")
    description: str = Field(default="")

    capabilities: dict[PromptCategory, float] = Field(
        default_factory=dict,
        description="Specialization score per prompt category, in [0, 1]",
    )
    complexity_handling: dict[ComplexityTier, float] = Field(
        default_factory=dict,
        description="How well the model copes with each complexity tier, in [0, 1]",
    )

    reliability: float = Field(default=0.85, ge=0, le=1)
    cost_efficiency: float = Field(default=0.5, ge=0, le=1)
    avg_response_time: float = Field(default=2.0, gt=0, description="Seconds")

    @field_validator("capabilities", "complexity_handling")
    @classmethod
    def _scores_in_range(cls, value: dict) -> dict:
        for key, score in value.items():
            if not 0.0 <= score <= 1.0:
                raise ValueError(f"score for '{key}' must be in [0, 1], got {score}")
        return value

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        return value.strip().lower()

    def capability(self, category: PromptCategory) -> float:
        return self.capabilities.get(category, 0.0)

    def complexity_fit(self, tier: ComplexityTier) -> float:
        # Unknown tiers are neither rewarded nor punished
        return self.complexity_handling.get(tier, 0.5)


@dataclass
class ModelHealth:
    """Exponentially smoothed call outcomes."""

    status: HealthStatus = HealthStatus.HEALTHY
    success_rate: float = 1.0
    latency_ms: float | None = None
    consecutive_failures: int = 0
    last_error: str | None = None
    last_cause: FailureCause | None = None
    updated_at: datetime | None = None

    def score(self, latency_reference_ms: float = constants.LATENCY_PENALTY_REFERENCE_MS) -> float:
        """
        Success rate penalised by latency.

        The penalty grows towards 50% as latency grows; a model answering
        in `latency_reference_ms` loses a quarter of its score.
        """
        if self.latency_ms is None:
            return self.success_rate
        penalty = 0.5 * self.latency_ms / (self.latency_ms + latency_reference_ms)
        return self.success_rate * (1.0 - penalty)


@dataclass
class ModelUsage:
    """Cumulative counters."""

    calls: int = 0
    successes: int = 0
    failures: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0
    total_latency_ms: float = 0.0

    @property
    def average_latency_ms(self) -> float:
        return self.total_latency_ms / self.calls if self.calls else 0.0


@dataclass
class Model:
    """Registry-owned live record."""

    profile: ModelProfile
    health: ModelHealth = field(default_factory=ModelHealth)
    usage: ModelUsage = field(default_factory=ModelUsage)
    # False once the backend stops reporting the model
    available: bool = True

    @property
    def name(self) -> str:
        return self.profile.name


@dataclass(frozen=True)
class ModelSnapshot:
    """Point-in-time copy of a Model."""

    name: str
    display_name: str
    provider: str
    capabilities: Mapping[PromptCategory, float]
    complexity_handling: Mapping[ComplexityTier, float]
    reliability: float
    cost_efficiency: float
    avg_response_time: float

    available: bool
    status: HealthStatus
    success_rate: float
    latency_ms: float | None
    health_score: float
    consecutive_failures: int
    last_error: str | None

    calls: int
    successes: int
    failures: int
    prompt_tokens: int
    completion_tokens: int
    cost: float

    @classmethod
    def of(cls, model: Model, latency_reference_ms: float) -> ModelSnapshot:
        profile, health, usage = model.profile, model.health, model.usage
        return cls(
            name=profile.name,
            display_name=profile.display_name or profile.name,
            provider=profile.provider,
            capabilities=MappingProxyType(dict(profile.capabilities)),
            complexity_handling=MappingProxyType(dict(profile.complexity_handling)),
            reliability=profile.reliability,
            cost_efficiency=profile.cost_efficiency,
            avg_response_time=profile.avg_response_time,
            available=model.available,
            status=health.status,
            success_rate=health.success_rate,
            latency_ms=health.latency_ms,
            health_score=health.score(latency_reference_ms),
            consecutive_failures=health.consecutive_failures,
            last_error=health.last_error,
            calls=usage.calls,
            successes=usage.successes,
            failures=usage.failures,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            cost=usage.cost,
        )

    def capability(self, category: PromptCategory) -> float:
        return self.capabilities.get(category, 0.0)

    def complexity_fit(self, tier: ComplexityTier) -> float:
        return self.complexity_handling.get(tier, 0.5)

    @property
    def is_available(self) -> bool:
        return self.available and self.status != HealthStatus.UNHEALTHY
