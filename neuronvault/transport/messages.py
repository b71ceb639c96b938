"""
NeuronVault Transport - Wire messages.

Every frame is a JSON object {"type": ..., "data": {...}} with an
optional "request_id" used to correlate replies with requests.
"""

from __future__ import annotations

import json
import time
from enum import StrEnum
from typing import Any

from neuronvault.core.exceptions import NeuronVaultError


class MessageType(StrEnum):
    """Frame types exchanged with the orchestration backend."""

    # Client -> server
    PING = "ping"
    MODEL_REQUEST = "model_request"
    ORCHESTRATION_REQUEST = "orchestration_request"
    GET_MODEL_STATUS = "get_model_status"
    HEALTH_RESPONSE = "health_response"

    # Server -> client
    PONG = "pong"
    CONNECTION_ESTABLISHED = "connection_established"
    INDIVIDUAL_RESPONSE = "individual_response"
    ORCHESTRATION_PROGRESS = "orchestration_progress"
    SYNTHESIS_COMPLETE = "synthesis_complete"
    ORCHESTRATION_ERROR = "orchestration_error"
    MODEL_STATUS_UPDATE = "model_status_update"
    MODEL_STATUS_RESPONSE = "model_status_response"
    HEALTH_CHECK = "health_check"
    ERROR = "error"


class MessageDecodeError(NeuronVaultError):
    """Frame is not a JSON object with a string 'type'."""

    def __init__(self, reason: str, raw: str):
        super().__init__(f"Undecodable frame: {reason}", {"preview": raw[:120]})


def make_message(
    message_type: MessageType | str,
    data: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Build a frame."""
    message: dict[str, Any] = {"type": str(message_type), "data": data or {}}
    if request_id:
        message["request_id"] = request_id
    return message


def ping_message(request_id: str) -> dict[str, Any]:
    return make_message(MessageType.PING, {"timestamp": int(time.time() * 1000)}, request_id)


def encode(message: dict[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":"))


def decode(raw: str | bytes) -> dict[str, Any]:
    """
    Parse a frame.

    Raises:
        MessageDecodeError: If the frame is not a typed JSON object.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        message = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MessageDecodeError(f"invalid JSON ({e.msg})", raw) from e

    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        raise MessageDecodeError("missing 'type'", raw)

    data = message.get("data")
    if data is None:
        message["data"] = {}
    elif not isinstance(data, dict):
        raise MessageDecodeError("'data' must be an object", raw)
    return message
