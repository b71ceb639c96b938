"""
Core Exceptions - Unified error hierarchy for NeuronVault.

Follows SRP: each exception type handles one category of errors.
"""

from __future__ import annotations

from neuronvault.core.types import FailureCause


class NeuronVaultError(Exception):
    """Base exception for all NeuronVault errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | {self.details}"
        return self.message


# =============================================================================
# Validation Errors
# =============================================================================

class ValidationError(NeuronVaultError):
    """Input validation failed."""
    pass


class InvalidRequestError(ValidationError):
    """Orchestration request rejected before entering the state machine."""

    def __init__(self, reason: str, unknown_models: list[str] | None = None):
        details: dict = {"reason": reason}
        if unknown_models:
            details["unknown_models"] = unknown_models
        super().__init__(f"Invalid orchestration request: {reason}", details)
        self.reason = reason
        self.unknown_models = unknown_models or []


# =============================================================================
# Connectivity Errors
# =============================================================================

class ConnectivityError(NeuronVaultError):
    """Transport-level failure talking to the orchestration backend."""

    cause: FailureCause = FailureCause.CONNECTION


class ConnectTimeoutError(ConnectivityError):
    """Connection attempt timed out."""

    cause = FailureCause.TIMEOUT

    def __init__(self, url: str, timeout_seconds: float):
        super().__init__(
            f"Connection to '{url}' timed out after {timeout_seconds}s",
            {"url": url, "timeout": timeout_seconds}
        )
        self.url = url


class ConnectRefusedError(ConnectivityError):
    """Backend refused the connection."""

    cause = FailureCause.REFUSED

    def __init__(self, url: str, reason: str):
        super().__init__(
            f"Connection to '{url}' refused: {reason}",
            {"url": url, "reason": reason}
        )
        self.url = url
        self.reason = reason


class ProtocolMismatchError(ConnectivityError):
    """Handshake succeeded at TCP level but the protocol is not ours."""

    cause = FailureCause.PROTOCOL_MISMATCH

    def __init__(self, url: str, reason: str):
        super().__init__(
            f"Protocol mismatch with '{url}': {reason}",
            {"url": url, "reason": reason}
        )
        self.url = url
        self.reason = reason


class NotConnectedError(ConnectivityError):
    """Operation requires an active connection."""

    def __init__(self, operation: str = "send"):
        super().__init__(
            f"Cannot {operation}: not connected to orchestration backend",
            {"operation": operation}
        )


class ConnectionLostError(ConnectivityError):
    """Connection dropped while a request was in flight."""

    def __init__(self, reason: str = "connection closed"):
        super().__init__(f"Connection lost: {reason}", {"reason": reason})
        self.reason = reason


# =============================================================================
# Per-model Call Errors
# =============================================================================

class ModelCallError(NeuronVaultError):
    """A single model call failed. Recorded as a failed ModelResult."""

    def __init__(self, model: str, cause: FailureCause, reason: str):
        super().__init__(
            f"Model '{model}' failed ({cause.value}): {reason}",
            {"model": model, "cause": cause.value}
        )
        self.model = model
        self.cause = cause
        self.reason = reason


class ModelTimeoutError(ModelCallError):
    """Model did not answer within the per-call timeout."""

    def __init__(self, model: str, timeout_seconds: float):
        super().__init__(model, FailureCause.TIMEOUT, f"no response after {timeout_seconds}s")
        self.timeout_seconds = timeout_seconds


class BackendError(ModelCallError):
    """Backend reported an error for this model."""

    def __init__(self, model: str, reason: str, code: str | None = None):
        super().__init__(model, FailureCause.BACKEND, reason)
        self.code = code
        if code:
            self.details["code"] = code


class MalformedResponseError(ModelCallError):
    """Backend reply could not be parsed into a model response."""

    def __init__(self, model: str, reason: str):
        super().__init__(model, FailureCause.MALFORMED, reason)


# =============================================================================
# Synthesis Errors
# =============================================================================

class SynthesisError(NeuronVaultError):
    """Synthesis stage failed."""
    pass


class NoViableResultsError(SynthesisError):
    """Zero model results succeeded; nothing to synthesize."""

    def __init__(self, errors: dict[str, str] | None = None):
        errors = errors or {}
        super().__init__(
            f"No viable results: all {len(errors)} model call(s) failed",
            {"errors": errors}
        )
        self.errors = errors


# =============================================================================
# Athena Errors
# =============================================================================

class AthenaError(NeuronVaultError):
    """Recommendation subsystem error."""
    pass


class AnalysisError(AthenaError):
    """Prompt analysis raised unexpectedly."""
    pass


class ScoringError(AthenaError):
    """Model scoring or ranking failed."""
    pass


class AthenaDisabledError(AthenaError):
    """Operation requires Athena to be enabled."""

    def __init__(self, operation: str):
        super().__init__(f"Athena is disabled: cannot {operation}", {"operation": operation})


class NoRecommendationError(AthenaError):
    """No recommendation is available to apply."""

    def __init__(self) -> None:
        super().__init__("No recommendation available to apply")


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(NeuronVaultError):
    """Configuration error."""
    pass


class InvalidConfigError(ConfigurationError):
    """Invalid configuration value or file."""

    def __init__(self, source: str, reason: str):
        super().__init__(
            f"Invalid configuration in {source}: {reason}",
            {"source": source, "reason": reason}
        )
        self.source = source
        self.reason = reason
