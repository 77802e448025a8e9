"""Shared fixtures for unit tests."""

from __future__ import annotations

from types import SimpleNamespace
from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock

import pytest
from azure.core.exceptions import ResourceNotFoundError

from sqlmi_provisioner.config import load
from sqlmi_provisioner.core import AzureProvider
from sqlmi_provisioner.engine import ProvisionEngine, TransparentDataEncryptionHandler

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from sqlmi_provisioner.config.schema import Config

_AZURE_ENV_VARS = ("AZURE_TENANT_ID", "AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET", "SQLMI_LOG")

SUBSCRIPTION_ID = "00000000-0000-0000-0000-000000000000"
MI_ID = (
    f"/subscriptions/{SUBSCRIPTION_ID}/resourceGroups/rg-data"
    "/providers/Microsoft.Sql/managedInstances/sqlmi-prod"
)
OTHER_MI_ID = (
    f"/subscriptions/{SUBSCRIPTION_ID}/resourceGroups/rg-data"
    "/providers/Microsoft.Sql/managedInstances/sqlmi-test"
)
PROTECTOR_ID = f"{MI_ID}/encryptionProtector/current"
OTHER_PROTECTOR_ID = f"{OTHER_MI_ID}/encryptionProtector/current"
KEY_ID = "https://contoso-kv.vault.azure.net/keys/tde-key/0123456789abcdef0123456789abcdef"
KEY_NAME = "contoso-kv_tde-key_0123456789abcdef0123456789abcdef"
ADDRESS = "sqlmi_transparent_data_encryption"


class _DonePoller:
    def __init__(self, result: Any = None) -> None:
        self._result = result

    def wait(self, timeout: float | None = None) -> None:
        _ = timeout

    def done(self) -> bool:
        return True

    def result(self) -> Any:
        return self._result


class FakeSqlClient:
    """In-memory stand-in for the two SQL management operation groups the handler uses.

    Every managed instance named at construction starts with a service-managed
    protector. Writes are recorded in ``calls`` as ``(operation, instance, key)``.
    """

    def __init__(self, *instance_names: str) -> None:
        self.protectors: dict[str, SimpleNamespace] = {
            name.casefold(): self._service_managed() for name in instance_names
        }
        self.keys: dict[str, str] = {}
        self.calls: list[tuple[str, str, str]] = []
        self.fail_on: tuple[str, str] | None = None
        self.managed_instance_encryption_protectors = SimpleNamespace(
            get=self._get_protector, begin_create_or_update=self._put_protector
        )
        self.managed_instance_keys = SimpleNamespace(begin_create_or_update=self._put_key)

    @staticmethod
    def _service_managed() -> SimpleNamespace:
        return SimpleNamespace(
            server_key_type="ServiceManaged",
            server_key_name="ServiceManaged",
            uri=None,
            auto_rotation_enabled=False,
        )

    def key_type(self, instance: str) -> str:
        return self.protectors[instance.casefold()].server_key_type

    def _check(self, operation: str, instance: str) -> None:
        if self.fail_on == (operation, instance):
            raise RuntimeError(f"injected failure in {operation} on {instance}")
        if instance.casefold() not in self.protectors:
            raise ResourceNotFoundError(message=f"managed instance {instance} not found")

    def _get_protector(self, rg: str, instance: str, name: str, **kwargs: Any) -> SimpleNamespace:
        _ = rg, name, kwargs
        self._check("get", instance)
        return self.protectors[instance.casefold()]

    def _put_key(self, rg: str, instance: str, key_name: str, parameters: Any) -> _DonePoller:
        _ = rg
        self._check("key", instance)
        self.keys[key_name] = parameters.uri
        self.calls.append(("key", instance, key_name))
        return _DonePoller()

    def _put_protector(self, rg: str, instance: str, name: str, parameters: Any) -> _DonePoller:
        _ = rg, name
        self._check("protector", instance)
        if parameters.server_key_type == "ServiceManaged":
            protector = self._service_managed()
        else:
            protector = SimpleNamespace(
                server_key_type="AzureKeyVault",
                server_key_name=parameters.server_key_name,
                uri=self.keys[parameters.server_key_name],
                auto_rotation_enabled=bool(parameters.auto_rotation_enabled),
            )
        self.protectors[instance.casefold()] = protector
        self.calls.append(("protector", instance, protector.server_key_type))
        return _DonePoller(protector)


@pytest.fixture(autouse=True)
def _clean_azure_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove AZURE_* env vars so unit tests don't pick up real credentials."""
    for var in _AZURE_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def mock_client() -> MagicMock:
    client = MagicMock()
    done = MagicMock()
    done.done.return_value = True
    client.managed_instance_encryption_protectors.begin_create_or_update.return_value = done
    client.managed_instance_keys.begin_create_or_update.return_value = done
    return client


@pytest.fixture
def sql() -> FakeSqlClient:
    return FakeSqlClient("sqlmi-prod", "sqlmi-test")


@pytest.fixture
def engine(sql: FakeSqlClient, tmp_path: Path) -> ProvisionEngine:
    handler = TransparentDataEncryptionHandler(AzureProvider.from_client(sql))
    return ProvisionEngine(handler, workspace="default", state_path=tmp_path / "state.json")


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., Config]:
    """Factory fixture: write YAML + optional .env, return loaded Config."""

    def _make(yaml_str: str, *, dotenv: str | None = None) -> Config:
        (tmp_path / "config.yaml").write_text(yaml_str)
        if dotenv is not None:
            (tmp_path / ".env").write_text(dotenv)
        return load(tmp_path / "config.yaml")

    return _make
