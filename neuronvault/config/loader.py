"""
NeuronVault Config - Loader.

Loads configuration from YAML with environment overrides.

Priority:
1. Environment variables (NEURONVAULT_<SECTION>__<FIELD>)
2. Config file (~/.neuronvault/config.yaml)
3. Defaults
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import ValidationError

from neuronvault.config.models import NeuronVaultConfig
from neuronvault.core.exceptions import InvalidConfigError

CONFIG_DIR = Path.home() / ".neuronvault"
CONFIG_FILE = CONFIG_DIR / "config.yaml"
ENV_PREFIX = "NEURONVAULT_"

# Cached config instance
_cached_config: NeuronVaultConfig | None = None


def _env_overrides(environ: dict[str, str] | None = None) -> dict[str, dict[str, str]]:
    """
    Collect NEURONVAULT_<SECTION>__<FIELD> variables.

    Values stay strings; pydantic coerces them during validation.
    """
    env = os.environ if environ is None else environ
    overrides: dict[str, dict[str, str]] = {}

    for key, value in env.items():
        if not key.startswith(ENV_PREFIX) or "__" not in key:
            continue
        section, _, field = key[len(ENV_PREFIX) :].partition("__")
        if not section or not field:
            continue
        if value.lower() in ("none", "null"):
            value = None  # type: ignore[assignment]
        overrides.setdefault(section.lower(), {})[field.lower()] = value

    return overrides


def _merge(base: dict[str, Any], overrides: dict[str, dict[str, str]]) -> dict[str, Any]:
    merged = dict(base)
    for section, fields in overrides.items():
        current = merged.get(section) or {}
        if not isinstance(current, dict):
            current = {}
        merged[section] = {**current, **fields}
    return merged


def load_config(
    path: Path | str | None = None,
    environ: dict[str, str] | None = None,
) -> NeuronVaultConfig:
    """
    Load configuration.

    A missing file yields defaults. Environment overrides are applied
    on top of the file before validation.

    Args:
        path: YAML file (defaults to ~/.neuronvault/config.yaml).
        environ: Environment mapping (defaults to os.environ).

    Returns:
        Validated NeuronVaultConfig.

    Raises:
        InvalidConfigError: If the file is not valid YAML or fails validation.
    """
    config_path = Path(path) if path else CONFIG_FILE
    data: dict[str, Any] = {}

    if config_path.exists():
        try:
            with config_path.open(encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise InvalidConfigError(str(config_path), f"invalid YAML: {e}") from e

        if loaded is None:
            logger.debug(f"📁 Empty config file: {config_path}")
        elif not isinstance(loaded, dict):
            raise InvalidConfigError(str(config_path), "top level must be a mapping")
        else:
            data = loaded
            logger.debug(f"📁 Loaded config from {config_path}")
    else:
        logger.debug(f"📁 No config file at {config_path}, using defaults")

    overrides = _env_overrides(environ)
    if overrides:
        logger.debug(f"⚙️ Applying env overrides for sections: {sorted(overrides)}")
        data = _merge(data, overrides)

    try:
        return NeuronVaultConfig.model_validate(data)
    except ValidationError as e:
        raise InvalidConfigError(str(config_path), str(e)) from e


def save_config(config: NeuronVaultConfig, path: Path | str | None = None) -> Path:
    """
    Save configuration as YAML.

    Returns:
        Path written.
    """
    config_path = Path(path) if path else CONFIG_FILE
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with config_path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(config.model_dump(mode="json"), f, sort_keys=False)

    logger.info(f"💾 Config saved to {config_path}")
    return config_path


def get_config() -> NeuronVaultConfig:
    """Get the current configuration (cached)."""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_config()
    return _cached_config


def reset_config() -> None:
    """Reset the cached configuration."""
    global _cached_config
    _cached_config = None
