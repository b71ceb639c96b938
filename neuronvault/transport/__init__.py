"""
NeuronVault Transport - Connection to the orchestration backend.
"""

from neuronvault.transport.connectors import (
    AiohttpConnection,
    AiohttpConnector,
    Connector,
    WebSocketConnection,
)
from neuronvault.transport.link import TransportLink
from neuronvault.transport.messages import MessageType, decode, encode, make_message
from neuronvault.transport.state import (
    ConnectionState,
    ConnectResult,
    LatencyWindow,
    quality_score,
    quality_tier,
)

__all__ = [
    "AiohttpConnection",
    "AiohttpConnector",
    "ConnectResult",
    "ConnectionState",
    "Connector",
    "LatencyWindow",
    "MessageType",
    "TransportLink",
    "WebSocketConnection",
    "decode",
    "encode",
    "make_message",
    "quality_score",
    "quality_tier",
]
