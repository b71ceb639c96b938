"""
NeuronVault - Multi-model AI orchestration engine.

Fans a prompt out to several AI model backends under a chosen strategy,
tracks per-model progress and health, synthesizes a final answer, and
streams everything to subscribers. The Athena subsystem recommends which
models and strategy to use.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("neuronvault")
except PackageNotFoundError:
    # Package not installed, fallback to pyproject.toml
    __version__ = "0.4.0"

__author__ = "NeuronVault Contributors"
