"""
NeuronVault Config - Configuration management.
"""

from neuronvault.config.loader import get_config, load_config, reset_config, save_config
from neuronvault.config.models import (
    AthenaConfig,
    HealthConfig,
    LoggingConfig,
    NeuronVaultConfig,
    OrchestrationConfig,
    RegistryConfig,
    TransportConfig,
)

__all__ = [
    "AthenaConfig",
    "HealthConfig",
    "LoggingConfig",
    "NeuronVaultConfig",
    "OrchestrationConfig",
    "RegistryConfig",
    "TransportConfig",
    "get_config",
    "load_config",
    "reset_config",
    "save_config",
]
