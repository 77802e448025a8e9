"""Resource definitions."""

from sqlmi_provisioner.resources.base import Resource
from sqlmi_provisioner.resources.ids import (
    EncryptionProtectorId,
    ManagedInstanceId,
    NestedItemId,
    ResourceIdError,
)
from sqlmi_provisioner.resources.tde import TransparentDataEncryptionResource

__all__ = [
    "EncryptionProtectorId",
    "ManagedInstanceId",
    "NestedItemId",
    "Resource",
    "ResourceIdError",
    "TransparentDataEncryptionResource",
]
