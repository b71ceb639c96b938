"""
NeuronVault Registry - Model registry.

Thread-safe catalog of models with live health and usage counters.
Each model has its own lock so concurrent call completions never lose
an update.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import UTC, datetime

from loguru import logger

from neuronvault.config.models import HealthConfig
from neuronvault.core.exceptions import InvalidRequestError
from neuronvault.core.types import FailureCause, HealthStatus
from neuronvault.registry.models import Model, ModelHealth, ModelProfile, ModelSnapshot


class ModelRegistry:
    """Catalog of available models.

    Health is an exponential moving average of call outcomes:
    `ema = alpha * sample + (1 - alpha) * ema`, where a success samples
    1.0 and a failure 0.0. The smoothed success rate picks the status
    bucket (healthy / degraded / unhealthy).

    Example:
        >>> registry = ModelRegistry()
        >>> registry.register(ModelProfile(name="claude"))
        >>> registry.record_success("claude", latency_ms=850.0)
        >>> registry.get("claude").status
        <HealthStatus.HEALTHY: 'healthy'>
    """

    def __init__(self, health: HealthConfig | None = None) -> None:
        self.health_config = health or HealthConfig()
        self._models: dict[str, Model] = {}
        self._model_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()
        logger.debug("📚 ModelRegistry initialized")

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def register(self, profile: ModelProfile) -> None:
        """
        Register a model, keeping live counters if it already exists.

        Re-registering a model marks it available again.

        Args:
            profile: Catalog entry.
        """
        with self._lock:
            existing = self._models.get(profile.name)
            if existing is not None:
                if existing.profile != profile:
                    logger.warning(f"⚠️ Overwriting profile for model '{profile.name}'")
                    existing.profile = profile
                existing.available = True
                return

            self._models[profile.name] = Model(
                profile=profile,
                health=self._initial_health(profile),
            )
            self._model_locks[profile.name] = threading.Lock()
            logger.debug(f"📚 Registered model: {profile.name}")

    def _initial_health(self, profile: ModelProfile) -> ModelHealth:
        # The catalog reliability is the prior for the smoothed success rate
        health = ModelHealth(success_rate=profile.reliability)
        health.status = self._status_for(health.success_rate)
        return health

    def _status_for(self, success_rate: float) -> HealthStatus:
        if success_rate >= self.health_config.healthy_threshold:
            return HealthStatus.HEALTHY
        if success_rate >= self.health_config.degraded_threshold:
            return HealthStatus.DEGRADED
        return HealthStatus.UNHEALTHY

    def _snapshot(self, model: Model) -> ModelSnapshot:
        return ModelSnapshot.of(model, self.health_config.latency_reference_ms)

    def get(self, name: str) -> ModelSnapshot | None:
        """Get a model snapshot by name."""
        with self._lock:
            model = self._models.get(name)
        if model is None:
            return None
        with self._model_locks[name]:
            return self._snapshot(model)

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._models

    __contains__ = has

    def require(self, names: Iterable[str]) -> list[ModelSnapshot]:
        """
        Resolve a model selection.

        Raises:
            InvalidRequestError: If the selection is empty or names unknown models.
        """
        requested = list(names)
        if not requested:
            raise InvalidRequestError("model set is empty")

        with self._lock:
            unknown = [name for name in requested if name not in self._models]
        if unknown:
            raise InvalidRequestError(f"unknown models: {', '.join(unknown)}", unknown)

        return [snapshot for name in requested if (snapshot := self.get(name)) is not None]

    def names(self) -> list[str]:
        """Model names in registration order."""
        with self._lock:
            return list(self._models)

    def all(self) -> list[ModelSnapshot]:
        """Snapshots of every model, in registration order."""
        return [snapshot for name in self.names() if (snapshot := self.get(name)) is not None]

    def snapshot(self) -> dict[str, ModelSnapshot]:
        return {snapshot.name: snapshot for snapshot in self.all()}

    def count(self) -> int:
        with self._lock:
            return len(self._models)

    __len__ = count

    def available_names(self) -> list[str]:
        """Names of models the backend currently serves."""
        return [s.name for s in self.all() if s.available]

    def set_available(self, name: str, available: bool) -> None:
        """
        Mark a model as served or not served by the backend.

        Models are never removed, so health and usage survive a backend
        that stops and later resumes serving them.
        """
        model, lock = self._locked(name)
        with lock:
            if model.available == available:
                return
            model.available = available
        logger.info(f"📚 Model '{name}' marked {'available' if available else 'unavailable'}")

    # ------------------------------------------------------------------
    # Live updates
    # ------------------------------------------------------------------

    def _locked(self, name: str) -> tuple[Model, threading.Lock]:
        with self._lock:
            model = self._models.get(name)
            lock = self._model_locks.get(name)
        if model is None or lock is None:
            raise InvalidRequestError(f"unknown models: {name}", [name])
        return model, lock

    def _smooth(self, health: ModelHealth, sample: float, latency_ms: float | None) -> None:
        alpha = self.health_config.ema_alpha
        health.success_rate = alpha * sample + (1 - alpha) * health.success_rate
        if latency_ms is not None:
            if health.latency_ms is None:
                health.latency_ms = latency_ms
            else:
                health.latency_ms = alpha * latency_ms + (1 - alpha) * health.latency_ms
        health.updated_at = datetime.now(UTC)

    def _update_status(self, name: str, health: ModelHealth) -> None:
        status = self._status_for(health.success_rate)
        if status != health.status:
            emoji = "✅" if status == HealthStatus.HEALTHY else "⚠️"
            logger.info(
                f"{emoji} Model '{name}' {health.status.value} -> {status.value} "
                f"(success rate {health.success_rate:.2f})"
            )
            health.status = status

    def record_success(
        self,
        name: str,
        latency_ms: float,
        prompt_tokens: int = 0,
        completion_tokens: int = 0,
        cost: float = 0.0,
    ) -> ModelSnapshot:
        """Apply a successful call atomically."""
        model, lock = self._locked(name)
        with lock:
            health, usage = model.health, model.usage
            self._smooth(health, 1.0, latency_ms)
            health.consecutive_failures = 0
            self._update_status(name, health)

            usage.calls += 1
            usage.successes += 1
            usage.prompt_tokens += prompt_tokens
            usage.completion_tokens += completion_tokens
            usage.cost += cost
            usage.total_latency_ms += latency_ms
            return self._snapshot(model)

    def record_failure(
        self,
        name: str,
        cause: FailureCause,
        error: str | None = None,
        latency_ms: float | None = None,
    ) -> ModelSnapshot:
        """Apply a failed call atomically.

        Cancelled calls count as usage but leave health untouched.
        """
        model, lock = self._locked(name)
        with lock:
            health, usage = model.health, model.usage
            usage.calls += 1
            if latency_ms is not None:
                usage.total_latency_ms += latency_ms

            if cause == FailureCause.CANCELLED:
                return self._snapshot(model)

            usage.failures += 1
            self._smooth(health, 0.0, latency_ms)
            health.consecutive_failures += 1
            health.last_error = error
            health.last_cause = cause
            self._update_status(name, health)
            return self._snapshot(model)

    def reset_health(self, name: str | None = None) -> None:
        """Reset health (one model or all) to the catalog prior."""
        targets = [name] if name else self.names()
        for target in targets:
            model, lock = self._locked(target)
            with lock:
                model.health = self._initial_health(model.profile)
        logger.debug(f"📚 Health reset for {', '.join(targets) or 'no models'}")

    def get_stats(self) -> dict[str, int]:
        snapshots = self.all()
        return {
            "total": len(snapshots),
            "available": sum(1 for s in snapshots if s.available),
            "healthy": sum(1 for s in snapshots if s.status == HealthStatus.HEALTHY),
            "degraded": sum(1 for s in snapshots if s.status == HealthStatus.DEGRADED),
            "unhealthy": sum(1 for s in snapshots if s.status == HealthStatus.UNHEALTHY),
        }
