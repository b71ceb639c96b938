"""Tests for the decision trace."""

from __future__ import annotations

from neuronvault.athena.analyzer import PromptAnalyzer
from neuronvault.athena.recommender import Recommender
from neuronvault.core.events import EventTopic
from neuronvault.trace.decision_trace import DecisionTrace, TraceKind


class TestDecisionTrace:
    """Tests for recording and retention."""

    def test_record_assigns_sequence(self):
        trace = DecisionTrace()
        first = trace.record(TraceKind.ANALYSIS, "athena", "one")
        second = trace.record(TraceKind.STRATEGY, "athena", "two", {"strategy": "parallel"})

        assert (first.sequence, second.sequence) == (1, 2)
        assert second.data == {"strategy": "parallel"}
        assert second.to_log_line() == "[athena/strategy] two"

    def test_record_copies_data(self):
        trace = DecisionTrace()
        data = {"models": 2}
        entry = trace.record(TraceKind.SELECTION, "athena", "picked", data)
        data["models"] = 5

        assert entry.data == {"models": 2}

    def test_capacity_evicts_oldest(self):
        trace = DecisionTrace(capacity=3)
        for i in range(5):
            trace.record(TraceKind.RUN, "engine", f"run {i}")

        assert len(trace) == 3
        assert [e.message for e in trace.entries()] == ["run 2", "run 3", "run 4"]

    def test_tail(self):
        trace = DecisionTrace()
        for i in range(4):
            trace.record(TraceKind.RUN, "engine", f"run {i}")

        assert [e.message for e in trace.tail(2)] == ["run 2", "run 3"]
        assert trace.tail(0) == []
        assert trace.tail(-1) == []
        assert len(trace.tail(10)) == 4

    def test_clear_keeps_sequence_running(self):
        trace = DecisionTrace()
        trace.record(TraceKind.RUN, "engine", "a")
        trace.record(TraceKind.RUN, "engine", "b")
        trace.clear()

        entry = trace.record(TraceKind.RUN, "engine", "c")

        assert len(trace) == 1
        assert entry.sequence == 3

    def test_for_source(self):
        trace = DecisionTrace()
        trace.record(TraceKind.RUN, "engine", "a")
        trace.record(TraceKind.ANALYSIS, "athena", "b")

        assert [e.message for e in trace.for_source("athena")] == ["b"]

    def test_entries_are_published(self, bus, recorder):
        trace = DecisionTrace(bus)
        entry = trace.record(TraceKind.ERROR, "athena", "boom")

        assert recorder.of(EventTopic.TRACE) == [entry]

    def test_to_dict(self):
        entry = DecisionTrace().record(TraceKind.APPLY, "athena", "applied", {"run_id": "r1"})
        data = entry.to_dict()

        assert data["kind"] == "apply"
        assert data["data"] == {"run_id": "r1"}
        assert "timestamp" in data


class TestDecisionTree:
    """Tests for the recommendation decision tree."""

    def test_tree_structure(self, registry):
        analysis = PromptAnalyzer().analyze("Write a Python function to parse CSV")
        rec = Recommender().recommend(analysis, registry)

        root = DecisionTrace.as_tree(rec)

        assert root.id == "input"
        assert root.description == "Write a Python function to parse CSV"
        (analysis_node,) = root.children
        assert analysis_node.id == "analysis"
        assert analysis_node.description == "coding / simple"
        assert [c.id for c in analysis_node.children] == ["models", "strategy"]

        models, strategy = analysis_node.children
        assert strategy.description == rec.strategy.value
        assert models.children[0].id == "weights"
        assert models.children[0].data == rec.weights
        output = models.children[0].children[0]
        assert output.id == "output"
        assert output.confidence == rec.overall_confidence
        assert set(models.data) == set(registry.names())

    def test_long_prompt_is_shortened(self, registry):
        prompt = "Explain " + "distributed consensus " * 10
        rec = Recommender().recommend(PromptAnalyzer().analyze(prompt), registry)

        root = DecisionTrace.as_tree(rec)

        assert len(root.description) == 60
        assert root.description.endswith("...")
        assert root.to_dict()["children"][0]["id"] == "analysis"
