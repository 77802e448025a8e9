"""Configuration models for YAML-based provisioning."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Self

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from sqlmi_provisioner.core.provider import AzureProvider, ServicePrincipalAuth
from sqlmi_provisioner.engine.polling import Timeouts
from sqlmi_provisioner.resources.tde import (
    TransparentDataEncryptionResource,  # noqa: TC001  Pydantic needs this at runtime
)

_CREDENTIAL_FIELDS = ("tenant_id", "client_id", "client_secret")


class ProviderConfig(BaseSettings):
    """Azure credential settings.

    Values come from YAML (constructor kwargs), then ``AZURE_*`` environment
    variables, then a ``.env`` file next to the configuration. Leave all three
    unset to use ambient credentials (``az login``, managed identity, workload
    identity). ``client_secret`` belongs in the environment, not in YAML.
    """

    model_config = SettingsConfigDict(
        env_prefix="AZURE_",
        env_file_encoding="utf-8-sig",
        extra="ignore",
    )

    tenant_id: str | None = None
    client_id: str | None = None
    client_secret: SecretStr | None = None

    @field_validator(*_CREDENTIAL_FIELDS, mode="before")
    @classmethod
    def _blank_is_unset(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def _all_or_nothing(self) -> Self:
        given = [f for f in _CREDENTIAL_FIELDS if getattr(self, f) is not None]
        if given and len(given) != len(_CREDENTIAL_FIELDS):
            missing = ", ".join(f"provider.{f}" for f in _CREDENTIAL_FIELDS if f not in given)
            raise ValueError(
                f"Incomplete service principal credentials: missing {missing} "
                "(set them in YAML or AZURE_* variables, or leave all unset for "
                "ambient credentials)"
            )
        return self

    def build_provider(self) -> AzureProvider:
        if self.client_secret is None:
            return AzureProvider()
        return AzureProvider(
            auth=ServicePrincipalAuth(
                tenant_id=self.tenant_id,
                client_id=self.client_id,
                client_secret=self.client_secret,
            )
        )


def _none_to_list(v: Any) -> Any:
    return v if v is not None else []


class Config(BaseModel):
    """Provisioning configuration, validated directly from YAML."""

    model_config = ConfigDict(extra="forbid")

    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    workspace: str = Field(default="default", min_length=1)
    state_path: Path = Path(".sqlmi-state.json")
    lock_timeout: float = Field(default=30.0, ge=0)
    timeouts: Timeouts = Field(default_factory=Timeouts)
    transparent_data_encryption: Annotated[
        list[TransparentDataEncryptionResource],
        BeforeValidator(_none_to_list),
    ] = []
    config_dir: Path = Path()

    @model_validator(mode="after")
    def _unique_names(self) -> Self:
        seen: set[str] = set()
        duplicates = []
        for r in self.transparent_data_encryption:
            if r.name in seen:
                duplicates.append(r.name)
            seen.add(r.name)
        if duplicates:
            names = ", ".join(repr(n) for n in sorted(set(duplicates)))
            raise ValueError(f"Duplicate transparent_data_encryption name(s): {names}")
        return self

    @property
    def resources(self) -> list[TransparentDataEncryptionResource]:
        return list(self.transparent_data_encryption)
