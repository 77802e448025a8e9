"""Plan and apply engine for managed instance encryption protectors."""

from sqlmi_provisioner.engine.engine import ProvisionEngine
from sqlmi_provisioner.engine.errors import (
    ApplyCanceled,
    ApplyError,
    OperationTimeoutError,
    ProvisionError,
    ResourceImportError,
    StalePlanError,
    StateLockError,
    StateWorkspaceMismatchError,
    ValidationError,
)
from sqlmi_provisioner.engine.polling import Timeouts
from sqlmi_provisioner.engine.tde_handler import TransparentDataEncryptionHandler
from sqlmi_provisioner.engine.types import Action, ApplyResult, FieldChange, Plan, ProtectorChange

__all__ = [
    "Action",
    "ApplyCanceled",
    "ApplyError",
    "ApplyResult",
    "FieldChange",
    "OperationTimeoutError",
    "Plan",
    "ProtectorChange",
    "ProvisionEngine",
    "ProvisionError",
    "ResourceImportError",
    "StalePlanError",
    "StateLockError",
    "StateWorkspaceMismatchError",
    "Timeouts",
    "TransparentDataEncryptionHandler",
    "ValidationError",
]
