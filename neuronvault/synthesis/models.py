"""
NeuronVault Synthesis - Outcome models.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from neuronvault.core.types import Strategy


@dataclass(frozen=True)
class ConsensusDetails:
    """How the consensus strategy grouped the results."""

    clusters: tuple[tuple[str, ...], ...]
    majority: tuple[str, ...]
    reached: bool
    consensus_score: float  # Share of successful results in the largest cluster
    agreement_points: tuple[str, ...]
    similarity_threshold: float


@dataclass(frozen=True)
class SynthesisOutcome:
    """Final answer of a run."""

    text: str
    confidence: float
    strategy: Strategy
    primary_model: str
    contributing_models: tuple[str, ...]
    weights: Mapping[str, float] = field(default_factory=dict)
    consensus: ConsensusDetails | None = None
    notes: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        data = {
            "text": self.text,
            "confidence": self.confidence,
            "strategy": self.strategy.value,
            "primary_model": self.primary_model,
            "contributing_models": list(self.contributing_models),
            "weights": dict(self.weights),
            "notes": list(self.notes),
        }
        if self.consensus:
            data["consensus"] = {
                "reached": self.consensus.reached,
                "score": self.consensus.consensus_score,
                "majority": list(self.consensus.majority),
                "clusters": [list(c) for c in self.consensus.clusters],
                "agreement_points": list(self.consensus.agreement_points),
            }
        return data
