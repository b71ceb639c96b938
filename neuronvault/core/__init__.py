"""
NeuronVault Core - Shared types, errors, events and metrics.
"""

from neuronvault.core.events import EventBus, EventTopic
from neuronvault.core.exceptions import (
    AthenaError,
    ConnectivityError,
    InvalidRequestError,
    ModelCallError,
    NeuronVaultError,
    NoViableResultsError,
    NotConnectedError,
)
from neuronvault.core.types import (
    AthenaState,
    ComplexityTier,
    ConnectionStatus,
    FailureCause,
    HealthStatus,
    PromptCategory,
    QualityTier,
    RunStatus,
    Strategy,
)

__all__ = [
    "AthenaError",
    "AthenaState",
    "ComplexityTier",
    "ConnectionStatus",
    "ConnectivityError",
    "EventBus",
    "EventTopic",
    "FailureCause",
    "HealthStatus",
    "InvalidRequestError",
    "ModelCallError",
    "NeuronVaultError",
    "NoViableResultsError",
    "NotConnectedError",
    "PromptCategory",
    "QualityTier",
    "RunStatus",
    "Strategy",
]
