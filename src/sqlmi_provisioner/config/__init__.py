"""YAML configuration loading and convenience plan/apply API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlmi_provisioner.config.loader import ConfigError, load_config
from sqlmi_provisioner.config.schema import Config, ProviderConfig
from sqlmi_provisioner.engine.engine import ProgressCallback, ProvisionEngine
from sqlmi_provisioner.engine.lock import StateLock
from sqlmi_provisioner.engine.tde_handler import TransparentDataEncryptionHandler

if TYPE_CHECKING:
    from pathlib import Path

    from sqlmi_provisioner.core.provider import AzureProvider
    from sqlmi_provisioner.core.state import State, TrackedProtector
    from sqlmi_provisioner.engine.types import ApplyResult, Plan, ProtectorChange

__all__ = [
    "Config",
    "ConfigError",
    "ProviderConfig",
    "apply",
    "build_engine",
    "import_resource",
    "load",
    "load_config",
    "plan",
    "plan_and_apply",
    "refresh",
    "save_state",
    "validate",
]


def load(path: Path | str) -> Config:
    """Load a YAML configuration file."""
    return load_config(path)


def build_engine(config: Config, provider: AzureProvider | None = None) -> ProvisionEngine:
    """Build a ``ProvisionEngine`` for *config*; *provider* overrides the configured credentials."""
    handler = TransparentDataEncryptionHandler(
        provider or config.provider.build_provider(), config.timeouts
    )
    return ProvisionEngine(
        handler,
        workspace=config.workspace,
        state_path=config.state_path,
        lock_timeout=config.lock_timeout,
    )


def validate(config: Config) -> None:
    """Check *config* without contacting Azure."""
    build_engine(config).validate(config.resources)


def plan(config: Config, *, destroy: bool = False, refresh: bool = True) -> Plan:
    """Plan changes for the given configuration."""
    return build_engine(config).plan(config.resources, destroy=destroy, refresh=refresh)


def apply(
    plan_obj: Plan, config: Config, *, progress: ProgressCallback | None = None
) -> ApplyResult:
    """Apply a previously computed plan."""
    return build_engine(config).apply(plan_obj, progress=progress)


def plan_and_apply(config: Config, *, destroy: bool = False, refresh: bool = True) -> ApplyResult:
    """Plan and apply in one step."""
    engine = build_engine(config)
    plan_obj = engine.plan(config.resources, destroy=destroy, refresh=refresh)
    return engine.apply(plan_obj)


def refresh(config: Config) -> tuple[State, list[ProtectorChange]]:
    """Re-read tracked protectors from Azure without writing state.

    Returns the refreshed state and the drift found. Pass the state to
    :func:`save_state` to keep it.
    """
    return build_engine(config).refresh()


def save_state(config: Config, state: State) -> None:
    """Persist state to disk."""
    with StateLock(config.state_path, timeout=config.lock_timeout):
        state.serial += 1
        state.write(config.state_path)


def import_resource(config: Config, address: str, resource_id: str) -> TrackedProtector:
    """Adopt an existing encryption protector into state under *address*."""
    return build_engine(config).import_resource(address, resource_id)
