"""
NeuronVault Athena - Model and strategy recommendations.
"""

from neuronvault.athena.analyzer import PromptAnalyzer
from neuronvault.athena.controller import Athena, AthenaStateEvent
from neuronvault.athena.models import ModelScore, PromptAnalysis, Recommendation
from neuronvault.athena.performance import PerformanceTracker
from neuronvault.athena.recommender import STRATEGY_TABLE, Recommender, table_strategy

__all__ = [
    "STRATEGY_TABLE",
    "Athena",
    "AthenaStateEvent",
    "ModelScore",
    "PerformanceTracker",
    "PromptAnalysis",
    "PromptAnalyzer",
    "Recommendation",
    "Recommender",
    "table_strategy",
]
