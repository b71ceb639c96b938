"""
NeuronVault Registry - Loader.

Fills a ModelRegistry from a YAML catalog (static source) or by asking
the connected backend which models it serves (dynamic source).
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from loguru import logger
from pydantic import ValidationError

from neuronvault.config.models import HealthConfig, RegistryConfig
from neuronvault.core.exceptions import ConnectivityError, InvalidConfigError
from neuronvault.registry.models import ModelProfile
from neuronvault.registry.registry import ModelRegistry
from neuronvault.transport.messages import MessageType

if TYPE_CHECKING:
    from neuronvault.transport.link import TransportLink

BUILTIN_CATALOG = Path(__file__).parent / "catalog.yaml"

DISCOVERY_TIMEOUT_SECONDS = 10.0


class CatalogLoader:
    """Loads model profiles into a registry.

    Example:
        >>> loader = CatalogLoader(registry)
        >>> loaded = loader.load_builtin()
        >>> print(f"Loaded {loaded} models")
    """

    def __init__(self, registry: ModelRegistry) -> None:
        self.registry = registry

    def load_builtin(self) -> int:
        return self.load_file(BUILTIN_CATALOG)

    def load_file(self, path: Path) -> int:
        """
        Load a catalog file.

        Returns:
            Number of models registered.

        Raises:
            InvalidConfigError: If the file is missing or not a catalog.
        """
        if not path.exists():
            raise InvalidConfigError(str(path), "catalog file not found")

        try:
            with path.open(encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise InvalidConfigError(str(path), f"invalid YAML: {e}") from e

        count = self._load_entries(data, str(path))
        logger.debug(f"📁 Loaded {count} models from {path}")
        return count

    def load_from_string(self, yaml_content: str) -> int:
        try:
            data = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise InvalidConfigError("<string>", f"invalid YAML: {e}") from e
        return self._load_entries(data, "<string>")

    def _load_entries(self, data: Any, source: str) -> int:
        if not isinstance(data, dict) or not isinstance(data.get("models"), list):
            raise InvalidConfigError(source, "expected a mapping with a 'models' list")

        count = 0
        for entry in data["models"]:
            profile = self._parse_profile(entry, source)
            if profile:
                self.registry.register(profile)
                count += 1

        if count == 0:
            raise InvalidConfigError(source, "catalog defines no valid models")
        return count

    @staticmethod
    def _parse_profile(entry: Any, source: str) -> ModelProfile | None:
        try:
            return ModelProfile.model_validate(entry)
        except ValidationError as e:
            logger.error(f"❌ Invalid model entry in {source}: {e}")
            return None

    async def discover(
        self,
        link: TransportLink,
        timeout: float = DISCOVERY_TIMEOUT_SECONDS,
    ) -> int:
        """
        Register the models the backend reports as available.

        Returns:
            Number of models registered.
        """
        profiles = await fetch_profiles(link, timeout)
        for profile in profiles:
            self.registry.register(profile)
        logger.info(f"📚 Discovered {len(profiles)} models from backend")
        return len(profiles)


def _builtin_profiles() -> dict[str, ModelProfile]:
    with BUILTIN_CATALOG.open(encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return {
        profile.name: profile
        for entry in data["models"]
        if (profile := CatalogLoader._parse_profile(entry, str(BUILTIN_CATALOG)))
    }


def load_registry(
    config: RegistryConfig | None = None,
    health: HealthConfig | None = None,
) -> ModelRegistry:
    """
    Build a registry from the static catalog.

    Args:
        config: Registry settings (catalog_path unset means builtin).
        health: Health smoothing settings.
    """
    config = config or RegistryConfig()
    registry = ModelRegistry(health)
    loader = CatalogLoader(registry)

    if config.catalog_path:
        loader.load_file(Path(config.catalog_path).expanduser())
    else:
        loader.load_builtin()
    return registry


async def fetch_profiles(
    link: TransportLink,
    timeout: float = DISCOVERY_TIMEOUT_SECONDS,
) -> list[ModelProfile]:
    """
    Ask the backend which models it serves.

    Known names reuse their builtin profile; unknown names get a neutral
    one. Models reported as unavailable are skipped.

    Raises:
        ConnectivityError: If the link is down or drops.
        TimeoutError: If the backend does not answer.
    """
    reply = await link.request(MessageType.GET_MODEL_STATUS, timeout=timeout)
    reported = reply["data"].get("models") or {}

    # Either {"claude": {"available": true}, ...} or [{"name": "claude"}, ...]
    if isinstance(reported, list):
        reported = {
            (item.get("name", "") if isinstance(item, dict) else str(item)): (
                item if isinstance(item, dict) else {}
            )
            for item in reported
        }

    builtin = _builtin_profiles()
    profiles: list[ModelProfile] = []
    for name, status in reported.items():
        if not name:
            continue
        status = status if isinstance(status, dict) else {}
        if status.get("available", True) is False:
            logger.info(f"⚠️ Backend reports '{name}' unavailable: {status.get('error', '')}")
            continue
        profiles.append(
            builtin.get(name.strip().lower()) or ModelProfile(name=name, display_name=name)
        )
    return profiles


async def discover_registry(
    link: TransportLink,
    registry: ModelRegistry,
    timeout: float = DISCOVERY_TIMEOUT_SECONDS,
) -> int:
    """
    Sync the registry with what the backend reports.

    Reported models are registered (or re-registered, keeping their live
    health and usage). Models the backend no longer serves are marked
    unavailable rather than removed, so runs in flight can still record
    their results. The catalog is left untouched when discovery fails or
    finds nothing.

    Returns:
        Number of models discovered (0 when the catalog was kept).
    """
    try:
        profiles = await fetch_profiles(link, timeout)
    except (ConnectivityError, TimeoutError) as e:
        logger.warning(f"⚠️ Model discovery failed, keeping static catalog: {e}")
        return 0

    if not profiles:
        logger.warning("⚠️ Backend reported no available models, keeping static catalog")
        return 0

    for profile in profiles:
        registry.register(profile)

    served = {profile.name for profile in profiles}
    for name in registry.names():
        if name not in served:
            registry.set_available(name, False)
    logger.info(f"📚 Discovered {len(profiles)} models from backend")
    return len(profiles)
