"""
NeuronVault Transport - Connection state.

Immutable snapshots published on every transition, plus the latency
ring buffer they are derived from.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime

from neuronvault.config import constants
from neuronvault.core.types import ConnectionStatus, FailureCause, QualityTier

_TIER_ORDER = (
    (QualityTier.EXCELLENT, constants.LATENCY_TIER_THRESHOLDS_MS["excellent"]),
    (QualityTier.GOOD, constants.LATENCY_TIER_THRESHOLDS_MS["good"]),
    (QualityTier.FAIR, constants.LATENCY_TIER_THRESHOLDS_MS["fair"]),
    (QualityTier.POOR, constants.LATENCY_TIER_THRESHOLDS_MS["poor"]),
)


def quality_tier(latency_ms: float | None) -> QualityTier:
    """Map an average latency to a tier. Bounds are exclusive."""
    if latency_ms is None:
        return QualityTier.UNKNOWN
    for tier, upper in _TIER_ORDER:
        if latency_ms < upper:
            return tier
    return QualityTier.VERY_POOR


def quality_score(latency_ms: float | None) -> float:
    """Linear score in [0, 1]: 1.0 at 0 ms, 0.0 at the 'poor' bound and above."""
    if latency_ms is None:
        return 0.0
    ceiling = constants.LATENCY_TIER_THRESHOLDS_MS["poor"]
    return round(max(0.0, 1.0 - latency_ms / ceiling), 3)


class LatencyWindow:
    """Ring buffer of the most recent round-trip samples (ms)."""

    def __init__(self, size: int = constants.LATENCY_WINDOW_SIZE) -> None:
        self._samples: deque[float] = deque(maxlen=size)

    def add(self, latency_ms: float) -> None:
        self._samples.append(latency_ms)

    def clear(self) -> None:
        self._samples.clear()

    @property
    def samples(self) -> tuple[float, ...]:
        return tuple(self._samples)

    @property
    def average(self) -> float | None:
        if not self._samples:
            return None
        return sum(self._samples) / len(self._samples)

    def __len__(self) -> int:
        return len(self._samples)


@dataclass(frozen=True)
class ConnectionState:
    """Snapshot of the transport link."""

    status: ConnectionStatus
    host: str
    port: int
    last_error: str | None = None
    latency_samples: tuple[float, ...] = ()
    average_latency_ms: float | None = None
    quality_score: float = 0.0
    quality_tier: QualityTier = QualityTier.UNKNOWN
    reconnect_attempts: int = 0
    max_reconnect_attempts: int = constants.RECONNECT_MAX_ATTEMPTS
    last_connected_at: datetime | None = None

    @property
    def is_connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "host": self.host,
            "port": self.port,
            "last_error": self.last_error,
            "average_latency_ms": self.average_latency_ms,
            "quality_score": self.quality_score,
            "quality_tier": self.quality_tier.value,
            "reconnect_attempts": self.reconnect_attempts,
            "last_connected_at": (
                self.last_connected_at.isoformat() if self.last_connected_at else None
            ),
        }


@dataclass(frozen=True)
class ConnectResult:
    """Outcome of connect()/reconnect()."""

    success: bool
    cause: FailureCause | None = None
    error: str | None = None
    already_connected: bool = False

    @classmethod
    def ok(cls, already_connected: bool = False) -> ConnectResult:
        return cls(success=True, already_connected=already_connected)

    @classmethod
    def failed(cls, cause: FailureCause, error: str) -> ConnectResult:
        return cls(success=False, cause=cause, error=error)

    def __bool__(self) -> bool:
        return self.success
