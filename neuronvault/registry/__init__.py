"""
NeuronVault Registry - Catalog of models with live health.
"""

from neuronvault.registry.loader import (
    BUILTIN_CATALOG,
    CatalogLoader,
    discover_registry,
    fetch_profiles,
    load_registry,
)
from neuronvault.registry.models import (
    Model,
    ModelHealth,
    ModelProfile,
    ModelSnapshot,
    ModelUsage,
)
from neuronvault.registry.registry import ModelRegistry

__all__ = [
    "BUILTIN_CATALOG",
    "CatalogLoader",
    "Model",
    "ModelHealth",
    "ModelProfile",
    "ModelRegistry",
    "ModelSnapshot",
    "ModelUsage",
    "discover_registry",
    "fetch_profiles",
    "load_registry",
]
