"""Tests for the model registry and catalog loading."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest
from conftest import FakeConnector

from neuronvault.config.models import HealthConfig, RegistryConfig
from neuronvault.core.exceptions import InvalidConfigError, InvalidRequestError
from neuronvault.core.types import ComplexityTier, FailureCause, HealthStatus, PromptCategory
from neuronvault.registry.loader import CatalogLoader, discover_registry, load_registry
from neuronvault.registry.models import ModelProfile
from neuronvault.registry.registry import ModelRegistry
from neuronvault.transport.link import TransportLink

CATALOG = """
models:
  - name: Alpha
    provider: acme
    capabilities:
      coding: 0.9
    complexity_handling:
      complex: 0.8
    reliability: 0.9
  - name: beta
    reliability: 0.6
"""


class TestRegistryCatalog:
    """Tests for registration and lookups."""

    def test_builtin_catalog(self, registry):
        assert registry.names() == ["claude", "gpt", "deepseek", "gemini", "mistral"]
        assert len(registry) == 5

    def test_snapshot_is_keyed_by_name(self, registry):
        snapshot = registry.snapshot()
        assert snapshot["claude"].provider == "anthropic"
        assert snapshot["claude"].capability(PromptCategory.ANALYSIS) == 0.95

    def test_missing_complexity_defaults_to_half(self):
        registry = ModelRegistry()
        registry.register(ModelProfile(name="bare"))
        assert registry.get("bare").complexity_fit(ComplexityTier.EXPERT) == 0.5

    def test_require_unknown_models(self, registry):
        with pytest.raises(InvalidRequestError) as exc_info:
            registry.require(["claude", "llama", "falcon"])
        assert exc_info.value.unknown_models == ["llama", "falcon"]

    def test_require_empty(self, registry):
        with pytest.raises(InvalidRequestError):
            registry.require([])

    def test_register_again_keeps_health(self, registry):
        registry.record_failure("gpt", FailureCause.TIMEOUT, "slow")
        before = registry.get("gpt").success_rate

        registry.register(ModelProfile(name="gpt", provider="openai", reliability=0.5))

        assert registry.get("gpt").success_rate == before
        assert registry.get("gpt").reliability == 0.5

    def test_get_stats(self, registry):
        assert registry.get_stats()["total"] == 5
        assert registry.get_stats()["healthy"] == 5

    def test_unavailable_models_are_kept(self, registry):
        registry.record_success("gemini", 300.0)

        registry.set_available("gemini", False)

        gemini = registry.get("gemini")
        assert "gemini" in registry
        assert not gemini.available
        assert not gemini.is_available
        assert gemini.successes == 1
        assert "gemini" not in registry.available_names()

        registry.register(ModelProfile(name="gemini"))
        assert registry.get("gemini").available

    def test_set_available_unknown_model(self, registry):
        with pytest.raises(InvalidRequestError):
            registry.set_available("llama", False)


class TestHealth:
    """Tests for the smoothed health model."""

    def test_initial_health_uses_reliability_prior(self, registry):
        claude = registry.get("claude")
        assert claude.success_rate == 0.94
        assert claude.status == HealthStatus.HEALTHY
        assert claude.health_score == 0.94

    def test_failures_degrade_then_unhealthy(self, registry):
        first = registry.record_failure("claude", FailureCause.TIMEOUT, "too slow", 200.0)
        assert first.success_rate == pytest.approx(0.658)
        assert first.status == HealthStatus.DEGRADED
        assert first.last_error == "too slow"

        second = registry.record_failure("claude", FailureCause.BACKEND, "500")
        assert second.success_rate == pytest.approx(0.4606)
        assert second.status == HealthStatus.UNHEALTHY
        assert second.consecutive_failures == 2
        assert not second.is_available

    def test_success_recovers(self, registry):
        registry.record_failure("claude", FailureCause.TIMEOUT, "x")
        registry.record_failure("claude", FailureCause.TIMEOUT, "x")

        recovered = registry.record_success("claude", 400.0)

        assert recovered.success_rate == pytest.approx(0.62242)
        assert recovered.status == HealthStatus.DEGRADED
        assert recovered.consecutive_failures == 0

    def test_latency_is_smoothed(self, registry):
        registry.record_success("gpt", 1000.0)
        snapshot = registry.record_success("gpt", 2000.0)

        assert snapshot.latency_ms == pytest.approx(1300.0)
        assert snapshot.health_score < snapshot.success_rate

    def test_usage_counters(self, registry):
        registry.record_success("gpt", 100.0, prompt_tokens=10, completion_tokens=5, cost=0.01)
        snapshot = registry.record_failure("gpt", FailureCause.MALFORMED, "bad json", 50.0)

        assert (snapshot.calls, snapshot.successes, snapshot.failures) == (2, 1, 1)
        assert snapshot.prompt_tokens == 10
        assert snapshot.cost == pytest.approx(0.01)

    def test_cancellation_leaves_health_untouched(self, registry):
        snapshot = registry.record_failure("gpt", FailureCause.CANCELLED, "superseded")

        assert snapshot.success_rate == 0.92
        assert snapshot.failures == 0
        assert snapshot.calls == 1

    def test_custom_thresholds(self):
        registry = ModelRegistry(HealthConfig(ema_alpha=1.0, healthy_threshold=0.9))
        registry.register(ModelProfile(name="m", reliability=1.0))

        assert registry.record_failure("m", FailureCause.TIMEOUT).status == HealthStatus.UNHEALTHY
        assert registry.record_success("m", 10.0).status == HealthStatus.HEALTHY

    def test_reset_health(self, registry):
        registry.record_failure("gpt", FailureCause.TIMEOUT)
        registry.reset_health("gpt")
        assert registry.get("gpt").success_rate == 0.92

    def test_unknown_model_update(self, registry):
        with pytest.raises(InvalidRequestError):
            registry.record_success("llama", 1.0)

    def test_concurrent_updates_are_not_lost(self, registry):
        def hammer() -> None:
            for _ in range(200):
                registry.record_success("deepseek", 10.0)

        threads = [threading.Thread(target=hammer) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert registry.get("deepseek").successes == 1600


class TestCatalogLoader:
    """Tests for YAML catalogs and discovery."""

    def test_load_from_string_normalizes_names(self):
        registry = ModelRegistry()
        assert CatalogLoader(registry).load_from_string(CATALOG) == 2
        assert registry.names() == ["alpha", "beta"]
        assert registry.get("beta").status == HealthStatus.DEGRADED

    def test_invalid_entries_are_skipped(self):
        registry = ModelRegistry()
        content = CATALOG + "  - name: broken\n    reliability: 7\n"
        assert CatalogLoader(registry).load_from_string(content) == 2

    @pytest.mark.parametrize("content", ["models: [", "just text", "models: []"])
    def test_invalid_catalogs(self, content):
        with pytest.raises(InvalidConfigError):
            CatalogLoader(ModelRegistry()).load_from_string(content)

    def test_load_registry_from_file(self, tmp_path: Path):
        path = tmp_path / "catalog.yaml"
        path.write_text(CATALOG)

        registry = load_registry(RegistryConfig(catalog_path=path))

        assert registry.names() == ["alpha", "beta"]

    def test_missing_catalog_file(self, tmp_path: Path):
        with pytest.raises(InvalidConfigError):
            load_registry(RegistryConfig(catalog_path=tmp_path / "nope.yaml"))

    @pytest.mark.asyncio
    async def test_discover_merges_into_catalog(self, bus, transport_config):
        def responder(message: dict) -> dict | None:
            if message["type"] != "get_model_status":
                return None
            return {
                "type": "model_status_response",
                "data": {
                    "models": {
                        "claude": {"available": True},
                        "llama": {"available": True},
                        "gpt": {"available": False, "error": "quota"},
                    }
                },
                "request_id": message["request_id"],
            }

        link = TransportLink(transport_config, bus, FakeConnector(responder))
        await link.connect()
        registry = load_registry()
        registry.record_failure("gpt", FailureCause.TIMEOUT, "slow")

        count = await discover_registry(link, registry, timeout=1)

        assert count == 2
        assert registry.names() == ["claude", "gpt", "deepseek", "gemini", "mistral", "llama"]
        assert registry.available_names() == ["claude", "llama"]
        assert registry.get("claude").provider == "anthropic"
        assert registry.get("gpt").failures == 1
        assert not registry.get("gpt").is_available
        assert registry.get_stats()["available"] == 2
        await link.disconnect()

    @pytest.mark.asyncio
    async def test_discover_keeps_catalog_when_disconnected(self, link, registry):
        assert await discover_registry(link, registry, timeout=0.1) == 0
        assert len(registry) == 5
