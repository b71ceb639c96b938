"""
NeuronVault Orchestration - Model backends.

The engine calls models through a ModelBackend. The default backend
sends a correlated `model_request` frame over the transport link and
waits for the matching `individual_response`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from neuronvault.core.exceptions import BackendError, MalformedResponseError
from neuronvault.transport.link import TransportLink
from neuronvault.transport.messages import MessageType


@dataclass(frozen=True)
class ModelReply:
    """Successful model answer."""

    content: str
    confidence: float | None = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0


@runtime_checkable
class ModelBackend(Protocol):
    """Something that can ask one model one prompt."""

    async def call(self, model: str, prompt: str, context: str | None = None) -> ModelReply:
        """
        Raises:
            ModelCallError: Backend error or malformed reply.
            ConnectivityError: Link down or dropped.
        """
        ...


class TransportModelBackend:
    """ModelBackend over a TransportLink."""

    def __init__(self, link: TransportLink) -> None:
        self.link = link

    async def call(self, model: str, prompt: str, context: str | None = None) -> ModelReply:
        payload: dict[str, Any] = {"model_name": model, "prompt": prompt}
        if context:
            payload["context"] = context
        # The engine owns the per-call timeout
        reply = await self.link.request(MessageType.MODEL_REQUEST, payload)
        return parse_reply(model, reply)


def parse_reply(model: str, message: dict[str, Any]) -> ModelReply:
    """
    Turn a backend frame into a ModelReply.

    Raises:
        BackendError: The backend reported an error.
        MalformedResponseError: The frame is not a usable answer.
    """
    message_type = message.get("type")
    data = message.get("data") or {}

    if message_type in (MessageType.ERROR, MessageType.ORCHESTRATION_ERROR):
        reason = data.get("message") or data.get("error") or "backend error"
        raise BackendError(model, str(reason), data.get("code"))

    if message_type != MessageType.INDIVIDUAL_RESPONSE:
        raise MalformedResponseError(model, f"unexpected reply type '{message_type}'")

    content = data.get("content", data.get("response"))
    if not isinstance(content, str) or not content.strip():
        raise MalformedResponseError(model, "reply has no content")

    confidence = data.get("confidence")
    if confidence is not None:
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            raise MalformedResponseError(model, f"confidence is not a number: {confidence!r}")
        if not math.isfinite(confidence) or not 0.0 <= confidence <= 1.0:
            raise MalformedResponseError(model, f"confidence out of range: {confidence}")

    usage = data.get("usage") or {}
    try:
        prompt_tokens = int(usage.get("prompt_tokens", 0))
        completion_tokens = int(usage.get("completion_tokens", 0))
        cost = float(data.get("cost", 0.0))
    except (TypeError, ValueError) as e:
        raise MalformedResponseError(model, f"bad usage fields: {e}") from e

    return ModelReply(
        content=content,
        confidence=float(confidence) if confidence is not None else None,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        cost=cost,
    )
