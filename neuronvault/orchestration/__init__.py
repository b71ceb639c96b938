"""
NeuronVault Orchestration - Runs, strategies and the engine.
"""

from neuronvault.orchestration.backends import (
    ModelBackend,
    ModelReply,
    TransportModelBackend,
    parse_reply,
)
from neuronvault.orchestration.engine import OrchestrationEngine
from neuronvault.orchestration.models import (
    ModelResult,
    ModelResultEvent,
    OrchestrationRequest,
    OrchestrationRun,
    RunErrorEvent,
    RunProgress,
    RunStatusEvent,
    SynthesisEvent,
    generate_conversation_id,
)
from neuronvault.orchestration.strategies import (
    STRATEGY_EXECUTORS,
    RunContext,
    capability_order,
    cascade_order,
    plan_call_order,
)

__all__ = [
    "STRATEGY_EXECUTORS",
    "ModelBackend",
    "ModelReply",
    "ModelResult",
    "ModelResultEvent",
    "OrchestrationEngine",
    "OrchestrationRequest",
    "OrchestrationRun",
    "RunContext",
    "RunErrorEvent",
    "RunProgress",
    "RunStatusEvent",
    "SynthesisEvent",
    "TransportModelBackend",
    "capability_order",
    "cascade_order",
    "generate_conversation_id",
    "parse_reply",
    "plan_call_order",
]
