"""
NeuronVault Synthesis - Synthesizer.

Combines the successful results of a run into one answer.

Confidence is always the weighted mean of the contributing results'
confidences, with weights renormalized over those contributors:

    confidence = sum(w_i * c_i) / sum(w_i)

Non-positive or non-finite weights fall back to 1.0 so the sum is > 0.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING

from loguru import logger

from neuronvault.config import constants
from neuronvault.core.exceptions import NoViableResultsError
from neuronvault.core.types import Strategy
from neuronvault.synthesis.models import ConsensusDetails, SynthesisOutcome
from neuronvault.synthesis.similarity import (
    agreement_points,
    cluster,
    content_terms,
    first_sentences,
)

if TYPE_CHECKING:
    from neuronvault.orchestration.models import ModelResult


def weighted_confidence(results: Sequence[ModelResult], weights: Mapping[str, float]) -> float:
    total = sum(weights[r.model] for r in results)
    return round(sum(weights[r.model] * r.confidence for r in results) / total, 6)


class Synthesizer:
    """
    Strategy-specific merge rules.

    - parallel: primary answer (highest weight x confidence) followed by
      the other answers summarized to their first sentences
    - consensus: merge the majority cluster of similar answers, or fall
      back to the highest-weighted single answer
    - adaptive: the single successful answer
    - cascade: the last answer of the chain, or the best earlier one if
      the chain broke
    """

    def __init__(
        self,
        similarity_threshold: float = constants.CONSENSUS_SIMILARITY_THRESHOLD,
        summary_sentences: int = constants.SUMMARY_SENTENCES,
    ) -> None:
        self.similarity_threshold = similarity_threshold
        self.summary_sentences = summary_sentences
        self._handlers: dict[
            Strategy,
            Callable[[list[ModelResult], list[ModelResult], dict[str, float]], SynthesisOutcome],
        ] = {
            Strategy.PARALLEL: self._parallel,
            Strategy.CONSENSUS: self._consensus,
            Strategy.ADAPTIVE: self._adaptive,
            Strategy.CASCADE: self._cascade,
        }

    def synthesize(
        self,
        results: Sequence[ModelResult],
        weights: Mapping[str, float],
        strategy: Strategy,
    ) -> SynthesisOutcome:
        """
        Merge a run's results.

        Args:
            results: All results of the run, in arrival order.
            weights: Per-model weights from the request.
            strategy: Run strategy.

        Raises:
            NoViableResultsError: If no result succeeded.
        """
        successes = [r for r in results if r.success]
        if not successes:
            errors = {
                r.model: f"{r.cause.value if r.cause else 'unknown'}: {r.error or ''}".strip()
                for r in results
            }
            raise NoViableResultsError(errors)

        effective = self.effective_weights(successes, weights)
        outcome = self._handlers[strategy](list(results), successes, effective)
        logger.debug(
            f"🧩 Synthesized {strategy.value} answer from "
            f"{len(outcome.contributing_models)}/{len(results)} results "
            f"(confidence {outcome.confidence:.2f})"
        )
        return outcome

    @staticmethod
    def effective_weights(
        successes: Sequence[ModelResult],
        weights: Mapping[str, float],
    ) -> dict[str, float]:
        effective: dict[str, float] = {}
        for result in successes:
            weight = weights.get(result.model, constants.DEFAULT_MODEL_WEIGHT)
            if not math.isfinite(weight) or weight <= 0:
                logger.warning(
                    f"⚠️ Weight {weight} for '{result.model}' is not positive, using 1.0"
                )
                weight = constants.DEFAULT_MODEL_WEIGHT
            effective[result.model] = weight
        return effective

    @staticmethod
    def _rank(successes: Sequence[ModelResult], weights: Mapping[str, float]) -> list[ModelResult]:
        """By weight x confidence, ties by arrival order."""
        order = {id(r): i for i, r in enumerate(successes)}
        return sorted(
            successes,
            key=lambda r: (-(weights[r.model] * r.confidence), order[id(r)]),
        )

    def _parallel(
        self,
        results: list[ModelResult],
        successes: list[ModelResult],
        weights: dict[str, float],
    ) -> SynthesisOutcome:
        ranked = self._rank(successes, weights)
        primary, supporting = ranked[0], ranked[1:]

        text = primary.content.strip()
        if supporting:
            lines = [
                f"- {r.model}: {first_sentences(r.content, self.summary_sentences)}"
                for r in supporting
            ]
            text += "\n\nSupporting perspectives:\n" + "\n".join(lines)

        return SynthesisOutcome(
            text=text,
            confidence=weighted_confidence(successes, weights),
            strategy=Strategy.PARALLEL,
            primary_model=primary.model,
            contributing_models=tuple(r.model for r in ranked),
            weights=weights,
            notes=(f"{len(successes)} of {len(results)} models succeeded",),
        )

    def _consensus(
        self,
        results: list[ModelResult],
        successes: list[ModelResult],
        weights: dict[str, float],
    ) -> SynthesisOutcome:
        term_sets = [content_terms(r.content) for r in successes]
        groups = cluster(term_sets, self.similarity_threshold)

        # Largest cluster; ties by total weight, then earliest arrival
        best = min(
            groups,
            key=lambda g: (-len(g), -sum(weights[successes[i].model] for i in g), g[0]),
        )
        reached = len(best) > len(successes) / 2
        points = agreement_points(term_sets)
        cluster_names = tuple(tuple(successes[i].model for i in g) for g in groups)

        if reached:
            members = [successes[i] for i in best]
            ranked = self._rank(members, weights)
            representative = ranked[0]
            text = representative.content.strip()
            if len(members) > 1:
                summary = f"Consensus: {len(members)} of {len(successes)} models agree"
                if points:
                    summary += f" on {', '.join(points)}"
                text += f"\n\n{summary}."
            contributors = members
            note = f"majority cluster of {len(members)}/{len(successes)}"
        else:
            order = {id(r): i for i, r in enumerate(successes)}
            representative = min(
                successes,
                key=lambda r: (-weights[r.model], -r.confidence, order[id(r)]),
            )
            text = representative.content.strip()
            contributors = [representative]
            note = "no majority cluster, using highest-weighted answer"
            logger.info(f"🧩 Consensus not reached ({len(groups)} clusters), falling back")

        details = ConsensusDetails(
            clusters=cluster_names,
            majority=tuple(r.model for r in contributors) if reached else (),
            reached=reached,
            consensus_score=round(len(best) / len(successes), 6),
            agreement_points=tuple(points),
            similarity_threshold=self.similarity_threshold,
        )
        return SynthesisOutcome(
            text=text,
            confidence=weighted_confidence(contributors, weights),
            strategy=Strategy.CONSENSUS,
            primary_model=representative.model,
            contributing_models=tuple(r.model for r in contributors),
            weights=weights,
            consensus=details,
            notes=(note,),
        )

    def _adaptive(
        self,
        results: list[ModelResult],
        successes: list[ModelResult],
        weights: dict[str, float],
    ) -> SynthesisOutcome:
        chosen = successes[0]
        skipped = len(results) - 1
        notes = (f"fell through {skipped} failed candidate(s)",) if skipped else ()
        return SynthesisOutcome(
            text=chosen.content.strip(),
            confidence=weighted_confidence([chosen], weights),
            strategy=Strategy.ADAPTIVE,
            primary_model=chosen.model,
            contributing_models=(chosen.model,),
            weights={chosen.model: weights[chosen.model]},
            notes=notes,
        )

    def _cascade(
        self,
        results: list[ModelResult],
        successes: list[ModelResult],
        weights: dict[str, float],
    ) -> SynthesisOutcome:
        last = results[-1]
        if last.success:
            chosen = last
            note = f"refined through {len(successes)} step(s)"
        else:
            chosen = self._rank(successes, weights)[0]
            note = f"chain broke at '{last.model}', using best earlier answer"
            logger.info(f"🧩 Cascade chain broke at '{last.model}', using '{chosen.model}'")

        return SynthesisOutcome(
            text=chosen.content.strip(),
            confidence=weighted_confidence([chosen], weights),
            strategy=Strategy.CASCADE,
            primary_model=chosen.model,
            contributing_models=tuple(r.model for r in successes),
            weights={chosen.model: weights[chosen.model]},
            notes=(note,),
        )
