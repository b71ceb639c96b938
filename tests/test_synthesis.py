"""Tests for result synthesis."""

from __future__ import annotations

import pytest

from neuronvault.core.exceptions import NoViableResultsError
from neuronvault.core.types import FailureCause, Strategy
from neuronvault.orchestration.models import ModelResult
from neuronvault.synthesis.similarity import (
    agreement_points,
    cluster,
    content_terms,
    first_sentences,
    jaccard,
)
from neuronvault.synthesis.synthesizer import Synthesizer, weighted_confidence

PARIS = "The capital of France is Paris, a city on the Seine river."
PARIS_AGAIN = "Paris is the capital city of France, located on the Seine."
LYON = "Lyon handles gastronomy, silk weaving and Renaissance architecture."


def ok(model: str, content: str, confidence: float = 0.8) -> ModelResult:
    return ModelResult.succeeded(model, content, confidence, latency_ms=100.0)


def failed(model: str, cause: FailureCause = FailureCause.TIMEOUT) -> ModelResult:
    return ModelResult.failed(model, cause, "nope")


@pytest.fixture
def synthesizer() -> Synthesizer:
    return Synthesizer()


class TestSimilarity:
    """Tests for term sets and clustering."""

    def test_content_terms_drop_stopwords(self):
        assert content_terms("The cat and the hat!") == frozenset({"cat", "hat"})

    def test_jaccard(self):
        a = frozenset({"paris", "france"})
        b = frozenset({"paris", "seine"})
        assert jaccard(a, b) == pytest.approx(1 / 3)
        assert jaccard(frozenset(), frozenset()) == 1.0

    def test_cluster_in_arrival_order(self):
        sets = [content_terms(PARIS), content_terms(LYON), content_terms(PARIS_AGAIN)]
        assert cluster(sets, 0.35) == [[0, 2], [1]]

    def test_agreement_points(self):
        sets = [content_terms(PARIS), content_terms(PARIS_AGAIN), content_terms(LYON)]
        points = agreement_points(sets)
        assert {"paris", "france", "capital", "seine"} <= set(points)
        assert "lyon" not in points

    def test_first_sentences(self):
        assert first_sentences("One.  Two!\nThree? Four.", 2) == "One. Two!"


class TestConfidence:
    """Tests for weighted confidence."""

    def test_equal_weights_is_mean(self):
        results = [ok("a", "x", 0.9), ok("b", "y", 0.6), ok("c", "z", 0.3)]
        assert weighted_confidence(results, {"a": 1.0, "b": 1.0, "c": 1.0}) == pytest.approx(0.6)

    def test_weights_renormalize_over_contributors(self, synthesizer):
        results = [ok("a", PARIS, 0.9), ok("b", LYON, 0.5), failed("c")]
        outcome = synthesizer.synthesize(
            results, {"a": 3.0, "b": 1.0, "c": 100.0}, Strategy.PARALLEL
        )
        assert outcome.confidence == pytest.approx((3 * 0.9 + 1 * 0.5) / 4)

    def test_non_positive_weights_fall_back_to_one(self, synthesizer):
        results = [ok("a", PARIS, 0.8), ok("b", LYON, 0.4)]
        outcome = synthesizer.synthesize(results, {"a": 0.0, "b": -2.0}, Strategy.PARALLEL)
        assert outcome.confidence == pytest.approx(0.6)
        assert outcome.weights == {"a": 1.0, "b": 1.0}


class TestStrategies:
    """Tests for each strategy's merge rule."""

    def test_no_viable_results(self, synthesizer):
        results = [failed("a"), failed("b", FailureCause.BACKEND)]
        with pytest.raises(NoViableResultsError) as exc_info:
            synthesizer.synthesize(results, {}, Strategy.PARALLEL)
        assert set(exc_info.value.errors) == {"a", "b"}
        assert exc_info.value.errors["a"].startswith("timeout")

    def test_parallel_primary_and_supporting(self, synthesizer):
        results = [ok("a", LYON, 0.5), ok("b", PARIS, 0.9), failed("c")]
        outcome = synthesizer.synthesize(results, {}, Strategy.PARALLEL)

        assert outcome.primary_model == "b"
        assert outcome.text.startswith(PARIS)
        assert "Supporting perspectives" in outcome.text
        assert "- a: " in outcome.text
        assert outcome.contributing_models == ("b", "a")

    def test_consensus_majority(self, synthesizer):
        results = [ok("a", PARIS, 0.7), ok("b", LYON, 0.9), ok("c", PARIS_AGAIN, 0.8)]
        outcome = synthesizer.synthesize(results, {}, Strategy.CONSENSUS)

        assert outcome.consensus.reached is True
        assert set(outcome.contributing_models) == {"a", "c"}
        assert outcome.primary_model == "c"
        assert outcome.confidence == pytest.approx(0.75)
        assert outcome.consensus.consensus_score == pytest.approx(2 / 3)
        assert "Consensus: 2 of 3 models agree" in outcome.text

    def test_consensus_fallback_prefers_weight_then_confidence(self, synthesizer):
        results = [ok("a", PARIS, 0.9), ok("b", LYON, 0.6)]
        outcome = synthesizer.synthesize(results, {"a": 1.0, "b": 2.0}, Strategy.CONSENSUS)

        assert outcome.consensus.reached is False
        assert outcome.primary_model == "b"
        assert outcome.contributing_models == ("b",)
        assert outcome.confidence == pytest.approx(0.6)

    def test_consensus_fallback_tie_uses_arrival_order(self, synthesizer):
        results = [ok("a", PARIS, 0.7), ok("b", LYON, 0.7)]
        outcome = synthesizer.synthesize(results, {}, Strategy.CONSENSUS)
        assert outcome.primary_model == "a"

    def test_split_clusters_fall_back_to_heaviest_answer(self, synthesizer):
        lyon_again = "Lyon is known for gastronomy, silk weaving, Renaissance architecture."
        results = [
            ok("a", PARIS, 0.8),
            ok("b", PARIS_AGAIN, 0.8),
            ok("c", LYON, 0.8),
            ok("d", lyon_again, 0.8),
        ]
        outcome = synthesizer.synthesize(
            results, {"a": 1.0, "b": 1.0, "c": 2.0, "d": 2.0}, Strategy.CONSENSUS
        )

        # Two clusters of two: no strict majority, heaviest single answer wins
        assert outcome.consensus.reached is False
        assert outcome.consensus.clusters == (("a", "b"), ("c", "d"))
        assert outcome.primary_model == "c"

    def test_single_success_is_consensus(self, synthesizer):
        outcome = synthesizer.synthesize([ok("a", PARIS), failed("b")], {}, Strategy.CONSENSUS)
        assert outcome.consensus.reached is True
        assert outcome.text == PARIS

    def test_adaptive_uses_the_success(self, synthesizer):
        results = [failed("a"), ok("b", LYON, 0.6)]
        outcome = synthesizer.synthesize(results, {}, Strategy.ADAPTIVE)

        assert outcome.text == LYON
        assert outcome.contributing_models == ("b",)
        assert outcome.notes == ("fell through 1 failed candidate(s)",)

    def test_cascade_uses_last_answer(self, synthesizer):
        results = [ok("a", PARIS, 0.6), ok("b", PARIS_AGAIN, 0.9)]
        outcome = synthesizer.synthesize(results, {}, Strategy.CASCADE)

        assert outcome.primary_model == "b"
        assert outcome.confidence == pytest.approx(0.9)
        assert outcome.contributing_models == ("a", "b")

    def test_cascade_broken_chain(self, synthesizer):
        results = [ok("a", PARIS, 0.6), ok("b", LYON, 0.7), failed("c")]
        outcome = synthesizer.synthesize(results, {"a": 2.0}, Strategy.CASCADE)

        assert outcome.primary_model == "a"
        assert "chain broke" in outcome.notes[0]

    def test_outcome_to_dict(self, synthesizer):
        outcome = synthesizer.synthesize(
            [ok("a", PARIS), ok("b", PARIS_AGAIN)], {}, Strategy.CONSENSUS
        )
        data = outcome.to_dict()
        assert data["strategy"] == "consensus"
        assert data["consensus"]["reached"] is True
