"""
NeuronVault Orchestration - Data models.

Pydantic models for requests, per-model results and runs, plus the
event payloads the engine publishes.
"""

from __future__ import annotations

import math
import secrets
import time
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field

from neuronvault.config import constants
from neuronvault.core.exceptions import InvalidRequestError
from neuronvault.core.types import FailureCause, PromptCategory, RunStatus, Strategy
from neuronvault.synthesis.models import SynthesisOutcome
from neuronvault.utils.logger import log_prefix


def generate_conversation_id() -> str:
    """conv_<epoch ms>_<random>"""
    return f"conv_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class OrchestrationRequest(BaseModel):
    """One prompt, a model selection and a strategy. Immutable."""

    model_config = ConfigDict(frozen=True)

    prompt: str = Field(description="User prompt")
    models: tuple[str, ...] = Field(description="Selected models, in caller order")
    strategy: Strategy = Field(default=Strategy.PARALLEL)
    weights: dict[str, float] = Field(
        default_factory=dict,
        description="Per-model weight; missing models weigh 1.0",
    )
    conversation_id: str = Field(default_factory=generate_conversation_id)
    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    category: PromptCategory | None = Field(
        default=None,
        description="Detected category, when a recommendation supplied one",
    )
    created_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def create(
        cls,
        prompt: str,
        models: Iterable[str],
        strategy: Strategy | str = Strategy.PARALLEL,
        weights: Mapping[str, float] | None = None,
        conversation_id: str | None = None,
        category: PromptCategory | None = None,
    ) -> OrchestrationRequest:
        """
        Validate caller input and build a request.

        Raises:
            InvalidRequestError: On an empty prompt or model set, an unknown
                strategy, or weights that are not finite numbers for selected models.
        """
        if not prompt or not prompt.strip():
            raise InvalidRequestError("prompt is empty")

        names = tuple(dict.fromkeys(m.strip().lower() for m in models if m and m.strip()))
        if not names:
            raise InvalidRequestError("model set is empty")

        try:
            strategy = Strategy(strategy)
        except ValueError as e:
            raise InvalidRequestError(f"unknown strategy '{strategy}'") from e

        clean_weights: dict[str, float] = {}
        for name, value in (weights or {}).items():
            key = name.strip().lower()
            if key not in names:
                raise InvalidRequestError(f"weight given for unselected model '{name}'")
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise InvalidRequestError(f"weight for '{name}' must be a finite number")
            clean_weights[key] = float(value)

        data: dict = {
            "prompt": prompt,
            "models": names,
            "strategy": strategy,
            "weights": clean_weights,
            "category": category,
        }
        if conversation_id:
            data["conversation_id"] = conversation_id
        return cls(**data)

    def weight(self, model: str) -> float:
        return self.weights.get(model, constants.DEFAULT_MODEL_WEIGHT)

    @property
    def effective_weights(self) -> dict[str, float]:
        return {model: self.weight(model) for model in self.models}


class ModelResult(BaseModel):
    """Outcome of one model call. Never mutated after insertion."""

    model_config = ConfigDict(frozen=True)

    model: str
    success: bool
    content: str = ""
    confidence: float = Field(default=0.0, ge=0, le=1)
    latency_ms: float = Field(default=0.0, ge=0)
    timestamp: datetime = Field(default_factory=_utcnow)
    cause: FailureCause | None = None
    error: str | None = None
    attempt: int = Field(default=0, description="Position in a sequential chain")
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0

    @classmethod
    def succeeded(
        cls,
        model: str,
        content: str,
        confidence: float,
        latency_ms: float,
        attempt: int = 0,
        prompt_tokens: int = 0,
        completion_tokens: int = 0,
        cost: float = 0.0,
    ) -> ModelResult:
        return cls(
            model=model,
            success=True,
            content=content,
            confidence=min(max(confidence, 0.0), 1.0),
            latency_ms=latency_ms,
            attempt=attempt,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost=cost,
        )

    @classmethod
    def failed(
        cls,
        model: str,
        cause: FailureCause,
        error: str,
        latency_ms: float = 0.0,
        attempt: int = 0,
    ) -> ModelResult:
        return cls(
            model=model,
            success=False,
            cause=cause,
            error=error,
            latency_ms=latency_ms,
            attempt=attempt,
        )


class OrchestrationRun(BaseModel):
    """One end-to-end execution. Owned and mutated by the engine only."""

    run_id: str = Field(default_factory=lambda: f"run_{uuid.uuid4().hex[:10]}")
    request: OrchestrationRequest
    status: RunStatus = RunStatus.IDLE
    results: list[ModelResult] = Field(default_factory=list)
    outcome: SynthesisOutcome | None = None
    error: str | None = None
    errors: dict[str, str] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=_utcnow)
    ended_at: datetime | None = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def strategy(self) -> Strategy:
        return self.request.strategy

    @property
    def synthesized(self) -> str | None:
        return self.outcome.text if self.outcome else None

    @property
    def confidence(self) -> float | None:
        return self.outcome.confidence if self.outcome else None

    @property
    def succeeded(self) -> list[ModelResult]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> list[ModelResult]:
        return [r for r in self.results if not r.success]

    @property
    def is_partial(self) -> bool:
        """Some, but not all, results succeeded."""
        return bool(self.succeeded) and bool(self.failed)

    @property
    def duration_seconds(self) -> float:
        end = self.ended_at or _utcnow()
        return (end - self.started_at).total_seconds()

    def to_summary(self) -> str:
        status_emoji = {
            RunStatus.COMPLETED: "⚠️" if self.is_partial else "✅",
            RunStatus.ERROR: "❌",
            RunStatus.CANCELLED: "🚫",
        }
        emoji = status_emoji.get(self.status, "🔄")
        return (
            f"{log_prefix(emoji)} {self.run_id} [{self.strategy.value}]: {self.status.value} "
            f"({len(self.succeeded)}/{len(self.request.models)} models succeeded)"
        )


# ============================================================================
# Event payloads
# ============================================================================


@dataclass(frozen=True)
class RunStatusEvent:
    run_id: str
    status: RunStatus
    previous: RunStatus
    error: str | None = None


@dataclass(frozen=True)
class RunProgress:
    """Published after every result arrival and phase change."""

    run_id: str
    completed_models: int
    total_models: int
    phase: RunStatus
    overall_progress: float
    successful_models: int = 0
    failed_models: int = 0


@dataclass(frozen=True)
class ModelResultEvent:
    run_id: str
    result: ModelResult


@dataclass(frozen=True)
class SynthesisEvent:
    """Last event of a completed run."""

    run_id: str
    text: str
    confidence: float
    contributing_models: tuple[str, ...]
    is_partial: bool
    outcome: SynthesisOutcome


@dataclass(frozen=True)
class RunErrorEvent:
    run_id: str
    error: str
    errors: Mapping[str, str]
