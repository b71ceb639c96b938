"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from neuronvault.config.loader import load_config, save_config
from neuronvault.config.models import HealthConfig, NeuronVaultConfig, TransportConfig
from neuronvault.core.exceptions import InvalidConfigError


class TestDefaults:
    """Tests for default values."""

    def test_missing_file_gives_defaults(self, tmp_path: Path):
        config = load_config(tmp_path / "absent.yaml", environ={})

        assert config.transport.host == "localhost"
        assert config.transport.port == 8080
        assert config.orchestration.call_timeout == 30.0
        assert config.health.ema_alpha == 0.3
        assert config.athena.enabled is False
        assert config.athena.auto_apply_threshold == 0.8
        assert config.registry.source == "static"

    def test_empty_file_gives_defaults(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert load_config(path, environ={}) == NeuronVaultConfig()


class TestLoad:
    """Tests for YAML files and environment overrides."""

    def test_yaml_values(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "transport:\n  host: gateway.internal\n  port: 9443\n"
            "athena:\n  enabled: true\n  max_models: 2\n"
        )

        config = load_config(path, environ={})

        assert config.transport.host == "gateway.internal"
        assert config.transport.port == 9443
        assert config.athena.enabled is True
        assert config.athena.max_models == 2

    def test_env_overrides_file(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("transport:\n  host: gateway.internal\n  port: 9443\n")
        environ = {
            "NEURONVAULT_TRANSPORT__PORT": "9000",
            "NEURONVAULT_ORCHESTRATION__RUN_TIMEOUT": "none",
            "NEURONVAULT_TRANSPORT__SECURE": "true",
            "UNRELATED": "x",
        }

        config = load_config(path, environ=environ)

        assert config.transport.host == "gateway.internal"
        assert config.transport.port == 9000
        assert config.transport.secure is True
        assert config.orchestration.run_timeout is None

    @pytest.mark.parametrize(
        ("content", "environ"),
        [
            ("transport: [", {}),
            ("- just\n- a list\n", {}),
            ("transport:\n  port: 0\n", {}),
            ("athena:\n  auto_apply_threshold: 1.5\n", {}),
            ("", {"NEURONVAULT_TRANSPORT__PORT": "not-a-port"}),
        ],
    )
    def test_invalid_config(self, tmp_path: Path, content, environ):
        path = tmp_path / "config.yaml"
        path.write_text(content)

        with pytest.raises(InvalidConfigError) as exc_info:
            load_config(path, environ=environ)
        assert exc_info.value.source == str(path)

    def test_save_and_load(self, tmp_path: Path):
        config = NeuronVaultConfig(transport=TransportConfig(host="10.0.0.5", secure=False))

        path = save_config(config, tmp_path / "nested" / "config.yaml")

        assert load_config(path, environ={}) == config


class TestValidators:
    """Tests for cross-field validation."""

    def test_backoff_cap_below_base(self):
        with pytest.raises(ValueError):
            TransportConfig(backoff_base=5.0, backoff_cap=1.0)

    def test_health_thresholds_ordered(self):
        with pytest.raises(ValueError):
            HealthConfig(healthy_threshold=0.4, degraded_threshold=0.6)
