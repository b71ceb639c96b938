"""
NeuronVault Config - Configuration models.

Pydantic models for type-safe configuration.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from neuronvault.config import constants


class TransportConfig(BaseModel):
    """Connection to the remote orchestration backend."""

    host: str = Field(default=constants.DEFAULT_HOST, description="Backend host")
    port: int = Field(default=constants.DEFAULT_PORT, ge=1, le=65535, description="Backend port")
    connect_timeout: float = Field(
        default=constants.CONNECT_TIMEOUT_SECONDS, gt=0, le=120, description="Connect timeout (s)"
    )
    probe_interval: float = Field(
        default=constants.PROBE_INTERVAL_SECONDS, gt=0, le=300, description="Latency probe period (s)"
    )
    probe_timeout: float = Field(
        default=constants.PROBE_TIMEOUT_SECONDS, gt=0, le=60, description="Probe reply timeout (s)"
    )
    max_reconnect_attempts: int = Field(
        default=constants.RECONNECT_MAX_ATTEMPTS, ge=0, le=100, description="Reconnect attempts before error"
    )
    backoff_base: float = Field(
        default=constants.BACKOFF_BASE_SECONDS, gt=0, description="Backoff base delay (s)"
    )
    backoff_cap: float = Field(
        default=constants.BACKOFF_CAP_SECONDS, gt=0, description="Backoff maximum delay (s)"
    )
    backoff_jitter: bool = Field(default=True, description="Apply full jitter to backoff delays")
    secure: bool | None = Field(
        default=None, description="Force wss:// (True) or ws:// (False); auto when unset"
    )

    @model_validator(mode="after")
    def _cap_not_below_base(self) -> TransportConfig:
        if self.backoff_cap < self.backoff_base:
            raise ValueError("backoff_cap must be >= backoff_base")
        return self


class OrchestrationConfig(BaseModel):
    """Run execution settings."""

    call_timeout: float = Field(
        default=constants.CALL_TIMEOUT_SECONDS, gt=0, le=600, description="Per-model call timeout (s)"
    )
    run_timeout: float | None = Field(
        default=constants.RUN_TIMEOUT_SECONDS, gt=0, description="Overall run timeout (s), None to disable"
    )
    history_limit: int = Field(
        default=constants.RUN_HISTORY_LIMIT, ge=1, le=1000, description="Finished runs kept in memory"
    )
    consensus_similarity: float = Field(
        default=constants.CONSENSUS_SIMILARITY_THRESHOLD,
        gt=0,
        le=1,
        description="Jaccard similarity for two results to share a consensus cluster",
    )


class HealthConfig(BaseModel):
    """Model health smoothing."""

    ema_alpha: float = Field(
        default=constants.HEALTH_EMA_ALPHA, gt=0, le=1, description="EMA weight of the newest sample"
    )
    healthy_threshold: float = Field(default=constants.HEALTHY_THRESHOLD, ge=0, le=1)
    degraded_threshold: float = Field(default=constants.DEGRADED_THRESHOLD, ge=0, le=1)
    latency_reference_ms: float = Field(
        default=constants.LATENCY_PENALTY_REFERENCE_MS,
        gt=0,
        description="Latency (ms) at which the health score loses a quarter",
    )

    @model_validator(mode="after")
    def _ordered_thresholds(self) -> HealthConfig:
        if self.degraded_threshold > self.healthy_threshold:
            raise ValueError("degraded_threshold must be <= healthy_threshold")
        return self


class AthenaConfig(BaseModel):
    """Recommendation subsystem settings."""

    enabled: bool = Field(default=False, description="Start with Athena enabled")
    auto_apply: bool = Field(default=False, description="Auto-submit confident recommendations")
    auto_apply_threshold: float = Field(
        default=constants.AUTO_APPLY_THRESHOLD, ge=0, le=1, description="Auto-apply confidence floor"
    )
    marginal_gain_cutoff: float = Field(
        default=constants.MARGINAL_GAIN_CUTOFF,
        ge=0,
        le=1,
        description="Minimum marginal gain a further model must add to be included",
    )
    max_models: int = Field(default=constants.MAX_RECOMMENDED_MODELS, ge=1, le=16)
    learning_enabled: bool = Field(default=True, description="Learn from finished runs")


class RegistryConfig(BaseModel):
    """Where the model catalog comes from."""

    source: Literal["static", "dynamic"] = Field(default="static", description="Catalog source")
    catalog_path: Path | None = Field(default=None, description="YAML catalog (builtin when unset)")


class LoggingConfig(BaseModel):
    """Logging settings."""

    log_dir: Path = Field(default=Path.home() / ".neuronvault" / "logs")
    app_log_name: str = Field(default="app.log")
    console_level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="WARNING")
    file_level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="DEBUG")
    rotation: str = Field(default="10 MB", description="Loguru rotation rule")
    retention: str = Field(default="1 week", description="Loguru retention rule")
    compression: Literal["gz", "zip"] | None = Field(default="gz")
    json_logs: bool = Field(default=False, description="JSON lines in the file sink")
    include_caller: bool = Field(default=True)
    console_enabled: bool = Field(default=False, description="Log to stderr without --verbose")


class NeuronVaultConfig(BaseModel):
    """Root configuration."""

    transport: TransportConfig = Field(default_factory=TransportConfig)
    orchestration: OrchestrationConfig = Field(default_factory=OrchestrationConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    athena: AthenaConfig = Field(default_factory=AthenaConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
