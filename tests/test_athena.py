"""Tests for Athena: analysis, recommendation, learning and control."""

from __future__ import annotations

import pytest

from neuronvault.athena.analyzer import PromptAnalyzer
from neuronvault.athena.controller import Athena
from neuronvault.athena.performance import PerformanceTracker
from neuronvault.athena.recommender import STRATEGY_TABLE, Recommender, table_strategy
from neuronvault.config.models import AthenaConfig
from neuronvault.core.events import EventTopic
from neuronvault.core.exceptions import (
    AnalysisError,
    AthenaDisabledError,
    InvalidConfigError,
    InvalidRequestError,
    NoRecommendationError,
    ScoringError,
)
from neuronvault.core.types import (
    AthenaState,
    ComplexityTier,
    FailureCause,
    PromptCategory,
    RunStatus,
    Strategy,
)
from neuronvault.orchestration.models import ModelResult, OrchestrationRequest, OrchestrationRun
from neuronvault.registry.models import ModelProfile
from neuronvault.registry.registry import ModelRegistry
from neuronvault.synthesis.models import SynthesisOutcome
from neuronvault.trace.decision_trace import TraceKind

CODING_PROMPT = "Write a Python function to parse CSV"


def finished_run(
    strategy: Strategy,
    status: RunStatus,
    confidence: float = 0.9,
    models: tuple[str, ...] = ("claude", "gpt"),
) -> OrchestrationRun:
    request = OrchestrationRequest.create("prompt", models, strategy)
    run = OrchestrationRun(request=request, status=status)
    if status == RunStatus.COMPLETED:
        run.results = [ModelResult.succeeded(m, "answer", confidence, 100.0) for m in models]
        run.outcome = SynthesisOutcome(
            text="answer",
            confidence=confidence,
            strategy=strategy,
            primary_model=models[0],
            contributing_models=models,
        )
    else:
        run.results = [ModelResult.failed(m, FailureCause.BACKEND, "down") for m in models]
    return run


class FailingAnalyzer(PromptAnalyzer):
    def analyze(self, prompt):
        raise RuntimeError("regex engine exploded")


@pytest.fixture
def athena(engine, registry, bus) -> Athena:
    return Athena(engine, registry, bus, config=AthenaConfig(enabled=True))


class TestPromptAnalyzer:
    """Tests for prompt analysis."""

    def test_coding_prompt(self):
        analysis = PromptAnalyzer().analyze(CODING_PROMPT)

        assert analysis.category == PromptCategory.CODING
        assert analysis.complexity == ComplexityTier.SIMPLE
        assert analysis.secondary_categories == (PromptCategory.WRITING,)
        assert analysis.certainty == pytest.approx(0.8)
        assert analysis.in_taxonomy is True
        assert sum(analysis.capability_vector.values()) == pytest.approx(1.0)

    def test_math_expression(self):
        assert PromptAnalyzer().analyze("What is 12 * 7?").category == PromptCategory.MATH

    def test_greeting(self):
        assert PromptAnalyzer().analyze("hello there").category == PromptCategory.CONVERSATION

    def test_unknown_prompt_gets_generic_profile(self):
        analysis = PromptAnalyzer().analyze("zxcv qwerty asdf")

        assert analysis.in_taxonomy is False
        assert analysis.certainty == 0.4
        assert set(analysis.capability_vector.values()) == {1 / 8}

    def test_many_sentences_are_complex(self):
        prompt = "Explain why. Compare the options. Analyze the data. Evaluate the risks."
        assert PromptAnalyzer().analyze(prompt).complexity == ComplexityTier.COMPLEX

    def test_specialized_vocabulary_is_expert(self):
        prompt = "Explain the legal implications of this contract clause for our company"
        analysis = PromptAnalyzer().analyze(prompt)

        assert analysis.complexity == ComplexityTier.EXPERT
        assert analysis.specialized is True

    def test_empty_prompt(self):
        with pytest.raises(AnalysisError):
            PromptAnalyzer().analyze("   ")


class TestRecommender:
    """Tests for model scoring and selection."""

    def test_recommendation_shape(self, registry):
        analysis = PromptAnalyzer().analyze(CODING_PROMPT)
        rec = Recommender().recommend(analysis, registry)

        assert 1 <= len(rec.models) <= 4
        assert rec.strategy == table_strategy(analysis.complexity, len(rec.models))
        assert sum(rec.weights.values()) == pytest.approx(1.0, abs=1e-3)
        assert set(rec.weights) == set(rec.models)
        assert len(rec.scores) == len(registry)
        assert rec.scores[0].selected
        assert [s.final_score for s in rec.scores] == sorted(
            (s.final_score for s in rec.scores), reverse=True
        )
        assert rec.reasoning[-1].startswith("Overall confidence")
        assert 0.0 <= rec.overall_confidence <= 1.0

    def test_marginal_gain_cutoff_limits_selection(self, registry):
        analysis = PromptAnalyzer().analyze(CODING_PROMPT)
        rec = Recommender(AthenaConfig(marginal_gain_cutoff=1.0)).recommend(analysis, registry)

        assert len(rec.models) == 1
        assert rec.strategy == Strategy.ADAPTIVE

    def test_max_models(self, registry):
        analysis = PromptAnalyzer().analyze(CODING_PROMPT)
        rec = Recommender(AthenaConfig(marginal_gain_cutoff=0.0, max_models=2)).recommend(
            analysis, registry
        )

        assert len(rec.models) == 2
        assert rec.strategy == Strategy.CONSENSUS
        assert "limit of 2 models" in rec.scores[-1].reason

    def test_unhealthy_models_are_excluded(self, registry):
        for _ in range(3):
            registry.record_failure("claude", FailureCause.TIMEOUT)

        rec = Recommender().recommend(PromptAnalyzer().analyze(CODING_PROMPT), registry)

        assert "claude" not in rec.models
        claude = next(s for s in rec.scores if s.model == "claude")
        assert claude.reason == "model is unhealthy"

    def test_all_unhealthy_still_recommends(self):
        registry = ModelRegistry()
        registry.register(ModelProfile(name="only", reliability=0.1))

        rec = Recommender().recommend(PromptAnalyzer().analyze(CODING_PROMPT), registry)

        assert rec.models == ("only",)

    def test_empty_registry(self):
        with pytest.raises(ScoringError):
            Recommender().recommend(PromptAnalyzer().analyze(CODING_PROMPT), ModelRegistry())

    def test_estimated_time_follows_strategy(self, registry):
        analysis = PromptAnalyzer().analyze(CODING_PROMPT)
        rec = Recommender(AthenaConfig(marginal_gain_cutoff=1.0)).recommend(analysis, registry)

        assert rec.estimated_time_s == registry.get(rec.models[0]).avg_response_time

    def test_strategy_table_covers_every_tier(self):
        for tier in ComplexityTier:
            for count in (1, 2, 3):
                assert (tier, count) in STRATEGY_TABLE
        assert table_strategy(ComplexityTier.MODERATE, 7) == Strategy.PARALLEL
        assert table_strategy(ComplexityTier.EXPERT, 1) == Strategy.ADAPTIVE

    def test_history_overrides_underperforming_strategy(self, registry):
        tracker = PerformanceTracker()
        for _ in range(5):
            tracker.record_run(finished_run(Strategy.CONSENSUS, RunStatus.ERROR))
            tracker.record_run(finished_run(Strategy.PARALLEL, RunStatus.COMPLETED, 0.9))

        analysis = PromptAnalyzer().analyze(CODING_PROMPT)
        rec = Recommender(AthenaConfig(max_models=2, marginal_gain_cutoff=0.0), tracker).recommend(
            analysis, registry
        )

        assert rec.strategy == Strategy.PARALLEL
        assert any("consensus succeeded in 0%" in line for line in rec.reasoning)

    def test_too_little_history_keeps_table(self, registry):
        tracker = PerformanceTracker()
        for _ in range(2):
            tracker.record_run(finished_run(Strategy.CONSENSUS, RunStatus.ERROR))
            tracker.record_run(finished_run(Strategy.PARALLEL, RunStatus.COMPLETED))

        analysis = PromptAnalyzer().analyze(CODING_PROMPT)
        rec = Recommender(AthenaConfig(max_models=2, marginal_gain_cutoff=0.0), tracker).recommend(
            analysis, registry
        )

        assert rec.strategy == Strategy.CONSENSUS


class TestPerformanceTracker:
    """Tests for learned performance."""

    def test_model_scores(self):
        tracker = PerformanceTracker()
        tracker.record_run(finished_run(Strategy.PARALLEL, RunStatus.COMPLETED, 0.8))
        tracker.record_run(finished_run(Strategy.PARALLEL, RunStatus.ERROR))

        assert tracker.model_score("claude") == pytest.approx(0.4)
        assert tracker.model_samples("claude") == 2
        assert tracker.model_score("mistral") is None

    def test_strategy_success_rate(self):
        tracker = PerformanceTracker()
        tracker.record_run(finished_run(Strategy.CASCADE, RunStatus.COMPLETED, 0.9))
        tracker.record_run(finished_run(Strategy.CASCADE, RunStatus.COMPLETED, 0.5))

        assert tracker.strategy_success_rate(Strategy.CASCADE) == 0.5
        assert tracker.strategy_success_rate(Strategy.ADAPTIVE) is None

    def test_cancelled_runs_teach_nothing(self):
        tracker = PerformanceTracker()
        tracker.record_run(finished_run(Strategy.PARALLEL, RunStatus.CANCELLED))

        assert tracker.to_dict()["runs_learned"] == 0


class TestAthenaController:
    """Tests for the Athena state machine."""

    def test_disabled_by_default(self, engine, registry):
        athena = Athena(engine, registry)
        assert athena.state == AthenaState.DISABLED

    @pytest.mark.asyncio
    async def test_disabled_rejects_analysis(self, engine, registry):
        athena = Athena(engine, registry)
        with pytest.raises(AthenaDisabledError):
            await athena.analyze_prompt("hi")

    @pytest.mark.asyncio
    async def test_analyze_transitions(self, athena, recorder):
        rec = await athena.analyze_prompt(CODING_PROMPT)

        states = [e.state for e in recorder.of(EventTopic.ATHENA_STATE)]
        assert states == [AthenaState.ANALYZING, AthenaState.RECOMMENDING, AthenaState.READY]
        assert recorder.of(EventTopic.RECOMMENDATION) == [rec]
        assert athena.current_recommendation is rec

    @pytest.mark.asyncio
    async def test_analysis_is_traced(self, athena):
        await athena.analyze_prompt(CODING_PROMPT)

        kinds = [e.kind for e in athena.trace.entries()]
        assert kinds[0] == TraceKind.ANALYSIS
        assert kinds.count(TraceKind.SELECTION) == 5
        assert kinds[-2:] == [TraceKind.STRATEGY, TraceKind.RECOMMENDATION]

    @pytest.mark.asyncio
    async def test_toggle(self, athena, recorder):
        assert athena.toggle_enabled() is False
        assert athena.state == AthenaState.DISABLED
        assert athena.toggle_enabled(True) is True
        assert athena.state == AthenaState.IDLE

    def test_threshold_validation(self, athena):
        athena.set_auto_apply_threshold(0.5)
        assert athena.auto_apply_threshold == 0.5
        assert athena.recommender.config.auto_apply_threshold == 0.5

        with pytest.raises(InvalidConfigError):
            athena.set_auto_apply_threshold(1.5)

    @pytest.mark.asyncio
    async def test_auto_apply_submits(self, athena, engine):
        athena.toggle_auto_apply(True)
        athena.set_auto_apply_threshold(0.0)

        rec = await athena.analyze_prompt(CODING_PROMPT)

        assert athena.state == AthenaState.IDLE
        run = engine.active_run
        assert run is not None
        assert run.request.models == rec.models
        assert run.request.strategy == rec.strategy
        assert run.request.category == PromptCategory.CODING
        await engine.wait(run.run_id)

    @pytest.mark.asyncio
    async def test_auto_apply_below_threshold(self, athena, engine):
        athena.toggle_auto_apply(True)
        athena.set_auto_apply_threshold(1.0)

        await athena.analyze_prompt(CODING_PROMPT)

        assert engine.active_run is None
        assert athena.state == AthenaState.READY
        assert "Auto-apply skipped" in athena.trace.tail(1)[0].message

    @pytest.mark.asyncio
    async def test_auto_apply_never_preempts_a_run(self, athena, engine, backend):
        backend.script("claude", hang=True)
        running = await engine.submit(prompt="busy", models=["claude"])
        athena.toggle_auto_apply(True)
        athena.set_auto_apply_threshold(0.0)

        await athena.analyze_prompt(CODING_PROMPT)

        assert engine.active_run is running
        assert athena.state == AthenaState.READY
        assert athena.trace.tail(1)[0].message == "Auto-apply skipped: a run is active"
        await engine.cancel()

    @pytest.mark.asyncio
    async def test_apply_without_recommendation(self, athena):
        with pytest.raises(NoRecommendationError):
            await athena.apply_recommendation()

    @pytest.mark.asyncio
    async def test_apply_and_learn(self, athena, engine):
        await athena.analyze_prompt(CODING_PROMPT)

        run = await athena.apply_recommendation()
        await engine.wait(run.run_id)

        assert athena.state == AthenaState.IDLE
        assert athena.performance.strategy_samples(run.strategy) == 1
        assert athena.trace.tail(1)[0].kind == TraceKind.RUN

    @pytest.mark.asyncio
    async def test_analysis_failure_and_retry(self, engine, registry, bus):
        athena = Athena(
            engine, registry, bus, config=AthenaConfig(enabled=True), analyzer=FailingAnalyzer()
        )

        with pytest.raises(AnalysisError):
            await athena.analyze_prompt(CODING_PROMPT)
        assert athena.state == AthenaState.ERROR
        assert "regex engine exploded" in athena.last_error
        assert athena.trace.tail(1)[0].kind == TraceKind.ERROR

        athena.analyzer = PromptAnalyzer()
        rec = await athena.retry_from_error()

        assert rec is not None
        assert rec.category == PromptCategory.CODING
        assert athena.state == AthenaState.READY
        assert athena.last_error is None

    @pytest.mark.asyncio
    async def test_apply_failure_and_retry(self, athena, engine):
        rec = await athena.analyze_prompt(CODING_PROMPT)
        broken = rec.model_copy(update={"models": ("llama",), "weights": {"llama": 1.0}})

        with pytest.raises(InvalidRequestError):
            await athena.apply_recommendation(broken)
        assert athena.state == AthenaState.ERROR
        assert engine.active_run is None

        again = await athena.retry_from_error()

        assert again is broken
        assert athena.state == AthenaState.READY

    @pytest.mark.asyncio
    async def test_retry_outside_error_is_noop(self, athena):
        assert await athena.retry_from_error() is None
        assert athena.state == AthenaState.IDLE

    @pytest.mark.asyncio
    async def test_insights(self, athena):
        assert athena.recent_trend() == "insufficient_data"
        for _ in range(5):
            await athena.analyze_prompt(CODING_PROMPT)

        insights = athena.usage_insights()
        assert insights["total_prompts"] == 5
        assert insights["most_used_category"] == "coding"
        assert insights["recent_trend"] == "focused"
        assert athena.analytics()["recommendations"] == 5

    @pytest.mark.asyncio
    async def test_clear_history(self, athena, engine):
        await athena.analyze_prompt(CODING_PROMPT)
        run = await athena.apply_recommendation()
        await engine.wait(run.run_id)

        athena.clear_history()

        assert athena.history() == []
        assert athena.current_recommendation is None
        assert len(athena.trace) == 0
        assert athena.performance.to_dict()["runs_learned"] == 0
