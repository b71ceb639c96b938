"""
NeuronVault Trace - Decision trace.

Ordered, append-only justification log behind recommendations and run
outcomes. Entries are immutable; the oldest are evicted once capacity
is reached.
"""

from __future__ import annotations

import itertools
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from loguru import logger

from neuronvault.config import constants
from neuronvault.core.events import EventBus, EventTopic

if TYPE_CHECKING:
    from neuronvault.athena.models import Recommendation


class TraceKind(StrEnum):
    """Kinds of trace entries."""

    ANALYSIS = "analysis"
    SCORING = "scoring"
    SELECTION = "selection"
    STRATEGY = "strategy"
    RECOMMENDATION = "recommendation"
    APPLY = "apply"
    RUN = "run"
    ERROR = "error"
    STATE = "state"


@dataclass(frozen=True)
class TraceEntry:
    """One decision point.

    Attributes:
        kind: What sort of decision this is.
        source: Component that made it ("athena", "engine", ...).
        message: Human-readable justification.
        data: Structured details.
        timestamp: When it was recorded.
        sequence: Monotonic position in the trace.
    """

    kind: TraceKind
    source: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    sequence: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence": self.sequence,
            "kind": self.kind.value,
            "source": self.source,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_log_line(self) -> str:
        return f"[{self.source}/{self.kind.value}] {self.message}"


@dataclass
class DecisionNode:
    """Node of the recommendation decision tree."""

    id: str
    title: str
    description: str
    confidence: float
    data: dict[str, Any] = field(default_factory=dict)
    children: list[DecisionNode] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "confidence": self.confidence,
            "data": self.data,
            "children": [child.to_dict() for child in self.children],
        }


class DecisionTrace:
    """
    Bounded append-only trace.

    Example:
        >>> trace = DecisionTrace(bus)
        >>> trace.record(TraceKind.STRATEGY, "athena", "Strategy parallel")
        >>> [e.message for e in trace.tail(5)]
    """

    def __init__(
        self,
        bus: EventBus | None = None,
        capacity: int = constants.TRACE_CAPACITY,
    ) -> None:
        self.bus = bus
        self.capacity = capacity
        self._entries: deque[TraceEntry] = deque(maxlen=capacity)
        self._sequence = itertools.count(1)
        self._lock = threading.Lock()

    def record(
        self,
        kind: TraceKind,
        source: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> TraceEntry:
        """Append an entry and publish it on the trace topic."""
        with self._lock:
            entry = TraceEntry(
                kind=kind,
                source=source,
                message=message,
                data=dict(data or {}),
                sequence=next(self._sequence),
            )
            self._entries.append(entry)

        logger.debug(f"🧾 {entry.to_log_line()}")
        if self.bus is not None:
            self.bus.publish(EventTopic.TRACE, entry)
        return entry

    def entries(self) -> list[TraceEntry]:
        """All retained entries, oldest first."""
        with self._lock:
            return list(self._entries)

    def for_source(self, source: str) -> list[TraceEntry]:
        return [e for e in self.entries() if e.source == source]

    def tail(self, n: int = 10) -> list[TraceEntry]:
        if n <= 0:
            return []
        return self.entries()[-n:]

    def clear(self) -> None:
        """Drop every entry. Sequence numbers keep increasing."""
        with self._lock:
            self._entries.clear()
        logger.debug("🧾 Decision trace cleared")

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def as_tree(recommendation: Recommendation) -> DecisionNode:
        """
        Decision tree behind a recommendation.

        input -> analysis -> (models -> weights, strategy) -> output
        """
        rec = recommendation
        analysis = rec.analysis

        output = DecisionNode(
            id="output",
            title="Output",
            description=f"{rec.strategy.value} over {', '.join(rec.models)}",
            confidence=rec.overall_confidence,
            data={
                "auto_apply_recommended": rec.auto_apply_recommended,
                "estimated_time_s": rec.estimated_time_s,
            },
        )
        weights = DecisionNode(
            id="weights",
            title="Weights",
            description="Normalized from model scores",
            confidence=rec.overall_confidence,
            data=dict(rec.weights),
            children=[output],
        )
        models = DecisionNode(
            id="models",
            title="Models",
            description=f"{len(rec.models)} of {len(rec.scores) or len(rec.models)} selected",
            confidence=max(rec.model_confidences.values(), default=0.0),
            data={
                s.model: {"score": s.final_score, "selected": s.selected, "reason": s.reason}
                for s in rec.scores
            },
            children=[weights],
        )
        strategy = DecisionNode(
            id="strategy",
            title="Strategy",
            description=rec.strategy.value,
            confidence=rec.overall_confidence,
            data={"complexity": analysis.complexity.value, "model_count": len(rec.models)},
        )
        analysis_node = DecisionNode(
            id="analysis",
            title="Analysis",
            description=f"{analysis.category.value} / {analysis.complexity.value}",
            confidence=analysis.certainty,
            data=analysis.summary(),
            children=[models, strategy],
        )
        excerpt = analysis.prompt if len(analysis.prompt) <= 60 else analysis.prompt[:57] + "..."
        return DecisionNode(
            id="input",
            title="Input",
            description=excerpt,
            confidence=1.0,
            children=[analysis_node],
        )
