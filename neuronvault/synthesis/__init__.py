"""
NeuronVault Synthesis - Merging per-model results.
"""

from neuronvault.synthesis.models import ConsensusDetails, SynthesisOutcome
from neuronvault.synthesis.similarity import (
    agreement_points,
    cluster,
    content_terms,
    first_sentences,
    jaccard,
)
from neuronvault.synthesis.synthesizer import Synthesizer, weighted_confidence

__all__ = [
    "ConsensusDetails",
    "SynthesisOutcome",
    "Synthesizer",
    "agreement_points",
    "cluster",
    "content_terms",
    "first_sentences",
    "jaccard",
    "weighted_confidence",
]
