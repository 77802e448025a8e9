"""YAML configuration file loader."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError
from ruamel.yaml import YAML

from sqlmi_provisioner.config.schema import Config, ProviderConfig

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised for configuration loading / validation errors."""


def _provider(raw: Any, config_dir: Path) -> ProviderConfig:
    """YAML values win over ``AZURE_*`` variables, which win over ``config_dir/.env``."""
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"provider must be a mapping, got {type(raw).__name__}")

    unknown = sorted(set(raw) - set(ProviderConfig.model_fields))
    if unknown:
        raise ConfigError(f"Unknown provider setting(s): {', '.join(unknown)}")

    given = {k: v for k, v in raw.items() if v is not None}
    try:
        return ProviderConfig(_env_file=config_dir / ".env", **given)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc


def load_config(path: Path | str) -> Config:
    """Load a YAML configuration file and return a ``Config`` object.

    Raises:
        ConfigError: On YAML parse errors or validation failures.
    """
    path = Path(path)

    try:
        raw = YAML(typ="safe").load(path)
    except Exception as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: top level must be a mapping, got {type(raw).__name__}")

    raw["provider"] = _provider(raw.get("provider"), path.parent)
    raw["config_dir"] = path.parent
    try:
        config = Config.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    logger.info("Loaded config from %s (%d protector(s))", path, len(config.resources))
    return config
