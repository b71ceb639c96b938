"""
NeuronVault Core - Metrics collection.

In-memory metrics for monitoring orchestration operations.
No external backends; consumers read snapshots via get_all().

Metrics:
- neuronvault_model_calls_total: Model calls by model and status
- neuronvault_model_latency_seconds: Per-call latency
- neuronvault_runs_total: Orchestration runs by strategy and status
- neuronvault_reconnects_total: Reconnection attempts
- neuronvault_recommendations_total: Athena recommendations by strategy
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from threading import Lock
from typing import Any

from loguru import logger


@dataclass
class Counter:
    """Simple counter metric."""

    name: str
    value: int = 0
    labels: dict[str, int] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock, repr=False)

    def inc(self, amount: int = 1, **labels: str) -> None:
        """
        Increment counter.

        Args:
            amount: Amount to increment (default: 1)
            **labels: Optional labels (e.g., status="success", model="claude")
        """
        with self._lock:
            if labels:
                label_key = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
                self.labels[label_key] = self.labels.get(label_key, 0) + amount
            self.value += amount

    def get(self, **labels: str) -> int:
        """Get counter value, optionally for one label set."""
        with self._lock:
            if labels:
                label_key = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
                return self.labels.get(label_key, 0)
            return self.value

    def reset(self) -> None:
        """Reset counter to zero."""
        with self._lock:
            self.value = 0
            self.labels.clear()


@dataclass
class Histogram:
    """Simple histogram metric for duration tracking with sliding window."""

    name: str
    buckets: list[float] = field(
        default_factory=lambda: [0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
    )
    observations: list[float] = field(default_factory=list)
    _lock: Lock = field(default_factory=Lock, repr=False)
    max_observations: int = 10000

    def observe(self, value: float) -> None:
        """Record an observation, keeping the last max_observations."""
        with self._lock:
            self.observations.append(value)
            if len(self.observations) > self.max_observations:
                self.observations = self.observations[-self.max_observations :]

    def get_stats(self) -> dict[str, Any]:
        """
        Get histogram statistics.

        Returns:
            Dict with count, sum, min, max, avg, and bucket counts
        """
        with self._lock:
            if not self.observations:
                return {
                    "count": 0,
                    "sum": 0.0,
                    "min": 0.0,
                    "max": 0.0,
                    "avg": 0.0,
                    "buckets": {str(b): 0 for b in self.buckets},
                }

            count = len(self.observations)
            total = sum(self.observations)
            return {
                "count": count,
                "sum": total,
                "min": min(self.observations),
                "max": max(self.observations),
                "avg": total / count,
                "buckets": {
                    str(b): sum(1 for v in self.observations if v <= b) for b in self.buckets
                },
            }

    def reset(self) -> None:
        """Reset histogram observations."""
        with self._lock:
            self.observations.clear()


@dataclass
class Gauge:
    """Simple gauge metric for current values."""

    name: str
    value: float = 0.0
    _lock: Lock = field(default_factory=Lock, repr=False)

    def set(self, value: float) -> None:
        with self._lock:
            self.value = value

    def get(self) -> float:
        with self._lock:
            return self.value

    def reset(self) -> None:
        with self._lock:
            self.value = 0.0


class MetricsRegistry:
    """
    Registry for all metrics.

    Thread-safe in-memory metrics storage.
    """

    def __init__(self) -> None:
        self._counters: dict[str, Counter] = {}
        self._histograms: dict[str, Histogram] = {}
        self._gauges: dict[str, Gauge] = {}
        self._lock = Lock()

    def counter(self, name: str) -> Counter:
        """Get or create a counter metric."""
        with self._lock:
            if name not in self._counters:
                self._counters[name] = Counter(name=name)
            return self._counters[name]

    def histogram(self, name: str, buckets: list[float] | None = None) -> Histogram:
        """Get or create a histogram metric."""
        with self._lock:
            if name not in self._histograms:
                if buckets:
                    self._histograms[name] = Histogram(name=name, buckets=buckets)
                else:
                    self._histograms[name] = Histogram(name=name)
            return self._histograms[name]

    def gauge(self, name: str) -> Gauge:
        """Get or create a gauge metric."""
        with self._lock:
            if name not in self._gauges:
                self._gauges[name] = Gauge(name=name)
            return self._gauges[name]

    def get_all(self) -> dict[str, Any]:
        """
        Get all metrics data.

        Returns:
            Dict with all counters, histograms, and gauges
        """
        with self._lock:
            return {
                "counters": {
                    name: {"value": c.value, "labels": dict(c.labels)}
                    for name, c in self._counters.items()
                },
                "histograms": {name: h.get_stats() for name, h in self._histograms.items()},
                "gauges": {name: g.value for name, g in self._gauges.items()},
            }

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            for counter in self._counters.values():
                counter.reset()
            for histogram in self._histograms.values():
                histogram.reset()
            for gauge in self._gauges.values():
                gauge.reset()


# Global metrics registry
_registry = MetricsRegistry()


def get_registry() -> MetricsRegistry:
    """Get global metrics registry."""
    return _registry


def reset_metrics() -> None:
    """Reset all metrics in global registry."""
    _registry.reset()


# ============================================================================
# Orchestration Metrics
# ============================================================================


def track_model_call(model: str, latency: float, status: str = "success") -> None:
    """
    Track a single model call.

    Args:
        model: Model name (e.g., "claude")
        latency: Duration in seconds
        status: Outcome ("success" or a FailureCause value)
    """
    _registry.counter("neuronvault_model_calls_total").inc(model=model, status=status)
    _registry.histogram("neuronvault_model_latency_seconds").observe(latency)


def track_run(strategy: str, status: str, duration: float) -> None:
    """
    Track a finished orchestration run.

    Args:
        strategy: Strategy name
        status: Terminal status ("completed", "error", "cancelled")
        duration: Run duration in seconds
    """
    _registry.counter("neuronvault_runs_total").inc(strategy=strategy, status=status)
    _registry.histogram("neuronvault_run_duration_seconds").observe(duration)


def track_reconnect(attempt: int, outcome: str) -> None:
    """Track a reconnection attempt."""
    _registry.counter("neuronvault_reconnects_total").inc(outcome=outcome)
    _registry.gauge("neuronvault_reconnect_attempt").set(float(attempt))


def track_recommendation(strategy: str, confidence: float, auto_applied: bool) -> None:
    """Track an Athena recommendation."""
    _registry.counter("neuronvault_recommendations_total").inc(
        strategy=strategy, auto_applied=str(auto_applied).lower()
    )
    _registry.gauge("neuronvault_last_recommendation_confidence").set(confidence)


# ============================================================================
# Timing Context Manager
# ============================================================================


class timing:
    """
    Context manager for timing operations.

    Example:
        with timing("synthesis") as t:
            outcome = synthesizer.synthesize(results, weights, strategy)
        logger.debug(f"Synthesis took {t.duration:.2f}s")
    """

    def __init__(self, operation: str) -> None:
        self.operation = operation
        self.start_time: float = 0.0
        self.duration: float = 0.0

    def __enter__(self) -> timing:
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        self.duration = time.perf_counter() - self.start_time
        logger.debug(f"⏱️ {self.operation} took {self.duration:.3f}s")


def get_metrics_summary() -> str:
    """
    Get human-readable metrics summary.

    Returns:
        Formatted metrics summary (Markdown)
    """
    data = _registry.get_all()

    lines = ["📊 **Metrics Summary**", ""]

    calls = data["counters"].get("neuronvault_model_calls_total")
    if calls:
        lines.append(f"**Model Calls:** {calls['value']} total")
        for label, count in sorted(calls["labels"].items()):
            lines.append(f"  - {label}: {count}")
        lines.append("")

    latency = data["histograms"].get("neuronvault_model_latency_seconds")
    if latency and latency["count"] > 0:
        lines.append(
            f"**Model Latency:** avg={latency['avg']:.2f}s, max={latency['max']:.2f}s"
        )
        lines.append("")

    runs = data["counters"].get("neuronvault_runs_total")
    if runs:
        lines.append(f"**Runs:** {runs['value']} total")
        for label, count in sorted(runs["labels"].items()):
            lines.append(f"  - {label}: {count}")
        lines.append("")

    reconnects = data["counters"].get("neuronvault_reconnects_total")
    if reconnects:
        lines.append(f"**Reconnects:** {reconnects['value']} attempts")

    return "\n".join(lines)
