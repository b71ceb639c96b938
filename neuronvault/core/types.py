"""
NeuronVault Core - Shared types and enums.
"""

from __future__ import annotations

from enum import StrEnum


class ConnectionStatus(StrEnum):
    """Transport link status."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


class QualityTier(StrEnum):
    """Connection quality derived from latency samples."""

    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    VERY_POOR = "very_poor"
    UNKNOWN = "unknown"


class FailureCause(StrEnum):
    """Why a connection attempt or a model call failed."""

    TIMEOUT = "timeout"
    REFUSED = "refused"
    PROTOCOL_MISMATCH = "protocol_mismatch"
    CONNECTION = "connection"  # Link dropped or never up
    BACKEND = "backend"  # Backend reported an error
    MALFORMED = "malformed"  # Unparseable reply
    CANCELLED = "cancelled"


class Strategy(StrEnum):
    """Orchestration strategies. Closed set."""

    PARALLEL = "parallel"
    CONSENSUS = "consensus"
    ADAPTIVE = "adaptive"
    CASCADE = "cascade"


class RunStatus(StrEnum):
    """Orchestration run lifecycle."""

    IDLE = "idle"
    DISPATCHING = "dispatching"
    COLLECTING = "collecting"
    SYNTHESIZING = "synthesizing"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.ERROR, RunStatus.CANCELLED)

    @property
    def is_active(self) -> bool:
        return self in (RunStatus.DISPATCHING, RunStatus.COLLECTING, RunStatus.SYNTHESIZING)


class HealthStatus(StrEnum):
    """Model health bucket."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class AthenaState(StrEnum):
    """Recommendation subsystem state."""

    DISABLED = "disabled"
    IDLE = "idle"
    ANALYZING = "analyzing"
    RECOMMENDING = "recommending"
    READY = "ready"
    APPLYING = "applying"
    ERROR = "error"


class PromptCategory(StrEnum):
    """Closed prompt taxonomy."""

    REASONING = "reasoning"
    CREATIVITY = "creativity"
    CODING = "coding"
    ANALYSIS = "analysis"
    WRITING = "writing"
    MATH = "math"
    CONVERSATION = "conversation"
    SAFETY = "safety"


class ComplexityTier(StrEnum):
    """Prompt complexity tier."""

    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    EXPERT = "expert"

    @property
    def rank(self) -> int:
        return list(ComplexityTier).index(self)
