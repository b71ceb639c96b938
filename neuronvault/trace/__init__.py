"""
NeuronVault Trace - Decision trace.
"""

from neuronvault.trace.decision_trace import DecisionNode, DecisionTrace, TraceEntry, TraceKind

__all__ = ["DecisionNode", "DecisionTrace", "TraceEntry", "TraceKind"]
