"""Tests for the YAML configuration loader."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from sqlmi_provisioner.config.loader import ConfigError, load_config
from sqlmi_provisioner.resources.tde import TransparentDataEncryptionResource
from tests.unit.conftest import KEY_ID, MI_ID, OTHER_MI_ID

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from sqlmi_provisioner.config.schema import Config

_FULL_YAML = f"""\
workspace: prod
state_path: custom-state.json
lock_timeout: 5

timeouts:
  create: 3600
  read: 60

transparent_data_encryption:
  - name: prod
    managed_instance_id: {MI_ID}
    key_vault_key_id: {KEY_ID}
    auto_rotation_enabled: true
  - name: test
    managed_instance_id: {OTHER_MI_ID}
"""

_SP_YAML = """\
provider:
  tenant_id: tenant-from-yaml
  client_id: client-from-yaml
"""


class TestLoadConfig:
    def test_full_config(self, make_config: Callable[..., Config]) -> None:
        config = make_config(_FULL_YAML)

        assert config.workspace == "prod"
        assert str(config.state_path) == "custom-state.json"
        assert config.lock_timeout == 5
        assert config.timeouts.create == 3600
        assert config.timeouts.read == 60
        assert config.timeouts.delete == 24 * 60 * 60
        assert [r.address for r in config.resources] == [
            "sqlmi_transparent_data_encryption.prod",
            "sqlmi_transparent_data_encryption.test",
        ]
        prod = config.transparent_data_encryption[0]
        assert isinstance(prod, TransparentDataEncryptionResource)
        assert prod.key_vault_key_id == KEY_ID
        assert prod.auto_rotation_enabled is True
        assert config.transparent_data_encryption[1].uses_key_vault is False

    def test_defaults(self, make_config: Callable[..., Config]) -> None:
        config = make_config("transparent_data_encryption:\n")

        assert config.workspace == "default"
        assert str(config.state_path) == ".sqlmi-state.json"
        assert config.resources == []
        assert config.provider.tenant_id is None

    def test_empty_file(self, make_config: Callable[..., Config]) -> None:
        config = make_config("")
        assert config.resources == []

    def test_config_dir_is_set(self, make_config: Callable[..., Config], tmp_path: Path) -> None:
        config = make_config("workspace: w\n")
        assert config.config_dir == tmp_path

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Failed to read"):
            load_config(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError, match="Failed to read"):
            make_config("workspace: [unclosed\n")

    def test_top_level_must_be_mapping(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError, match="must be a mapping"):
            make_config("- a\n- b\n")

    def test_unknown_top_level_key(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError, match="databases"):
            make_config("databases: []\n")

    def test_unknown_resource_field(self, make_config: Callable[..., Config]) -> None:
        yaml = f"""\
transparent_data_encryption:
  - name: prod
    managed_instance_id: {MI_ID}
    server_key_type: ServiceManaged
"""
        with pytest.raises(ConfigError, match="server_key_type"):
            make_config(yaml)

    def test_bad_instance_id(self, make_config: Callable[..., Config]) -> None:
        yaml = """\
transparent_data_encryption:
  - name: prod
    managed_instance_id: sqlmi-prod
"""
        with pytest.raises(ConfigError, match="managed_instance_id"):
            make_config(yaml)

    def test_unknown_timeout_key(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError):
            make_config("timeouts:\n  destroy: 10\n")

    def test_duplicate_names(self, make_config: Callable[..., Config]) -> None:
        yaml = f"""\
transparent_data_encryption:
  - name: prod
    managed_instance_id: {MI_ID}
  - name: prod
    managed_instance_id: {OTHER_MI_ID}
"""
        with pytest.raises(ConfigError, match="Duplicate transparent_data_encryption name"):
            make_config(yaml)


class TestProviderResolution:
    def test_env_fills_missing_fields(
        self, make_config: Callable[..., Config], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("AZURE_CLIENT_SECRET", "from-env")
        config = make_config(_SP_YAML)

        assert config.provider.tenant_id == "tenant-from-yaml"
        assert config.provider.client_secret is not None
        assert config.provider.client_secret.get_secret_value() == "from-env"

    def test_yaml_beats_env(
        self, make_config: Callable[..., Config], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("AZURE_TENANT_ID", "tenant-from-env")
        monkeypatch.setenv("AZURE_CLIENT_SECRET", "from-env")
        config = make_config(_SP_YAML)
        assert config.provider.tenant_id == "tenant-from-yaml"

    def test_env_beats_dotenv(
        self, make_config: Callable[..., Config], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("AZURE_CLIENT_SECRET", "from-env")
        config = make_config(_SP_YAML, dotenv="AZURE_CLIENT_SECRET=from-dotenv\n")
        assert config.provider.client_secret is not None
        assert config.provider.client_secret.get_secret_value() == "from-env"

    def test_dotenv_used_last(self, make_config: Callable[..., Config]) -> None:
        config = make_config(
            "workspace: w\n",
            dotenv="AZURE_TENANT_ID=t\nAZURE_CLIENT_ID=c\nAZURE_CLIENT_SECRET=s\nOTHER=x\n",
        )
        assert config.provider.tenant_id == "t"
        assert config.provider.client_id == "c"
        assert config.provider.client_secret is not None
        assert config.provider.client_secret.get_secret_value() == "s"

    def test_partial_credentials_rejected(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError, match="missing provider.client_secret"):
            make_config(_SP_YAML)

    def test_blank_values_count_as_unset(self, make_config: Callable[..., Config]) -> None:
        config = make_config('provider:\n  tenant_id: ""\n  client_id:\n')
        assert config.provider.tenant_id is None
        assert config.provider.build_provider().auth is None

    def test_service_principal_provider(
        self, make_config: Callable[..., Config], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("AZURE_CLIENT_SECRET", "from-env")
        auth = make_config(_SP_YAML).provider.build_provider().auth

        assert auth is not None
        assert auth.client_id == "client-from-yaml"
        assert auth.client_secret.get_secret_value() == "from-env"

    def test_unknown_provider_setting(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError, match="subscription_id"):
            make_config("provider:\n  subscription_id: abc\n")
