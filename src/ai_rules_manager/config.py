"""Configuration model - the already-merged view of .armrc.json and arm.json.

Hierarchical global/local merging happens elsewhere. This module only models the
merged result and offers a single-level loader for one .armrc.json plus one
arm.json manifest.
"""

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import ValidationError
from pydantic import field_validator

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 1
DEFAULT_RATE_LIMIT = "10/minute"
DEFAULT_LOCK_PATH = "arm.lock"

# Top-level .armrc.json sections holding per-type defaults
REGISTRY_TYPES = ("git", "https", "s3", "gitlab", "local")


def _coerce_concurrency(value: Any) -> int | None:
    """Accept ints or numeric strings; anything else means "not configured"."""
    if value is None or value == "":
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring invalid concurrency value: {value!r}")
        return None
    if parsed < 1:
        logger.warning(f"Ignoring non-positive concurrency value: {value!r}")
        return None
    return parsed


class TypeDefaults(BaseModel):
    """Per-registry-type defaults ([git], [s3], ... sections)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    concurrency: int | None = None
    rate_limit: str | None = Field(default=None, alias="rateLimit")

    @field_validator("concurrency", mode="before")
    @classmethod
    def _validate_concurrency(cls, value: Any) -> int | None:
        return _coerce_concurrency(value)


class RegistryConfig(BaseModel):
    """Settings for one named registry. Unknown keys (auth tokens, profiles) are kept."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    type: str = ""
    url: str = ""
    region: str | None = None
    concurrency: int | None = None
    rate_limit: str | None = Field(default=None, alias="rateLimit")

    @field_validator("concurrency", mode="before")
    @classmethod
    def _validate_concurrency(cls, value: Any) -> int | None:
        return _coerce_concurrency(value)


class ChannelConfig(BaseModel):
    """Installation target: one or more directories (may contain ~ or $VARS)."""

    model_config = ConfigDict(frozen=True)

    directories: list[str] = Field(default_factory=list)


class RulesetSpec(BaseModel):
    """Manifest entry for a ruleset (arm.json)."""

    model_config = ConfigDict(frozen=True)

    version: str
    patterns: list[str] = Field(default_factory=list)


class ArmConfig(BaseModel):
    """Merged configuration consumed read-only by the installer and orchestrator."""

    model_config = ConfigDict(frozen=True)

    registries: dict[str, str] = Field(default_factory=dict)
    registry_configs: dict[str, RegistryConfig] = Field(default_factory=dict)
    type_defaults: dict[str, TypeDefaults] = Field(default_factory=dict)
    channels: dict[str, ChannelConfig] = Field(default_factory=dict)
    rulesets: dict[str, dict[str, RulesetSpec]] = Field(default_factory=dict)
    lock_path: Path = Path(DEFAULT_LOCK_PATH)

    def registry_type(self, registry: str) -> str:
        """Declared type of a registry, or "" when unknown."""
        registry_config = self.registry_configs.get(registry)
        return registry_config.type if registry_config else ""

    def registry_url(self, registry: str) -> str:
        """Source URL of a registry ([registries] section first, then its own config)."""
        if registry in self.registries:
            return self.registries[registry]
        registry_config = self.registry_configs.get(registry)
        return registry_config.url if registry_config else ""

    def concurrency_for(self, registry: str) -> int:
        """Concurrency ceiling: registry override, then type default, then 1."""
        registry_config = self.registry_configs.get(registry)
        if registry_config is None:
            return DEFAULT_CONCURRENCY
        if registry_config.concurrency is not None:
            return registry_config.concurrency
        type_defaults = self.type_defaults.get(registry_config.type)
        if type_defaults is not None and type_defaults.concurrency is not None:
            return type_defaults.concurrency
        return DEFAULT_CONCURRENCY

    def rate_limit_for(self, registry: str) -> str:
        """Rate limit string: registry override, then type default, then "10/minute"."""
        registry_config = self.registry_configs.get(registry)
        if registry_config is None:
            return DEFAULT_RATE_LIMIT
        if registry_config.rate_limit:
            return registry_config.rate_limit
        type_defaults = self.type_defaults.get(registry_config.type)
        if type_defaults is not None and type_defaults.rate_limit:
            return type_defaults.rate_limit
        return DEFAULT_RATE_LIMIT


def _read_json(path: Path) -> dict:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to read configuration file {path}: {e}", context={"path": str(path)}) from e

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a JSON object", context={"path": str(path)})
    return data


def load_config(
    armrc_path: Path,
    manifest_path: Path | None = None,
    lock_path: Path | None = None,
) -> ArmConfig:
    """
    Load configuration from one .armrc.json and (optionally) one arm.json.

    .armrc.json layout:
    {
      "registries": {"acme": {"url": "https://github.com/acme/rules", "type": "git"}},
      "channels": {"cursor": {"directories": [".cursor/rules"]}},
      "git": {"concurrency": 2, "rateLimit": "30/minute"}
    }

    arm.json layout:
    {
      "rulesets": {"acme": {"py-rules": {"version": "^1.0.0", "patterns": ["rules/*.md"]}}}
    }

    Args:
        armrc_path: Path to .armrc.json
        manifest_path: Optional path to arm.json
        lock_path: Optional lock file location (defaults to arm.lock)

    Returns:
        ArmConfig

    Raises:
        ConfigError: If a file is unreadable or its content fails validation
    """
    armrc = _read_json(armrc_path)
    manifest = _read_json(manifest_path) if manifest_path is not None else {}

    raw_registries = armrc.get("registries", {}) or {}
    try:
        config = ArmConfig(
            registries={name: (entry or {}).get("url", "") for name, entry in raw_registries.items()},
            registry_configs={name: RegistryConfig.model_validate(entry or {}) for name, entry in raw_registries.items()},
            type_defaults={
                type_name: TypeDefaults.model_validate(armrc[type_name])
                for type_name in REGISTRY_TYPES
                if isinstance(armrc.get(type_name), dict)
            },
            channels=armrc.get("channels", {}) or {},
            rulesets=manifest.get("rulesets", {}) or {},
            lock_path=lock_path or Path(DEFAULT_LOCK_PATH),
        )
    except (ValidationError, AttributeError) as e:
        raise ConfigError(
            f"Invalid configuration in {armrc_path}: {e}",
            context={"armrc_path": str(armrc_path), "manifest_path": str(manifest_path)},
        ) from e

    logger.debug(f"Loaded configuration: {len(config.registries)} registries, {len(config.channels)} channels")
    return config
