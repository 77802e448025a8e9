"""Managed instance transparent data encryption resource model."""

from __future__ import annotations

from typing import Annotated, Any, ClassVar

from pydantic import field_validator

from sqlmi_provisioner.resources.base import Resource
from sqlmi_provisioner.resources.ids import ManagedInstanceId, NestedItemId
from sqlmi_provisioner.resources.markers import Compare, ForceNew


class TransparentDataEncryptionResource(Resource):
    """Encryption protector settings of an Azure SQL Managed Instance.

    With ``key_vault_key_id`` set, the instance encrypts with a customer-managed
    key held in Key Vault. Left empty, the service-managed key is used.

    The protector always exists on the instance, so destroying this resource
    resets it to the service-managed key rather than deleting anything.
    """

    resource_type: ClassVar[str] = "sqlmi_transparent_data_encryption"

    managed_instance_id: Annotated[str, ForceNew(), Compare("casefold")]
    key_vault_key_id: str = ""
    auto_rotation_enabled: bool = False

    @field_validator("managed_instance_id")
    @classmethod
    def _check_managed_instance_id(cls, v: str) -> str:
        ManagedInstanceId.parse(v)
        return v

    @field_validator("key_vault_key_id")
    @classmethod
    def _check_key_vault_key_id(cls, v: str) -> str:
        v = v.strip()
        if v:
            NestedItemId.parse(v)
        return v

    @property
    def uses_key_vault(self) -> bool:
        return bool(self.key_vault_key_id)

    @property
    def instance_key(self) -> str:
        """Case-insensitive identity of the target managed instance."""
        return self.managed_instance_id.casefold()

    def settings(self) -> dict[str, Any]:
        """Fields compared against the protector recorded in state."""
        return self.model_dump(exclude={"name", "address"})
