"""Azure provider and local state."""

from sqlmi_provisioner.core.provider import AzureProvider, ServicePrincipalAuth
from sqlmi_provisioner.core.state import ProtectorSnapshot, State, TrackedProtector

__all__ = [
    "AzureProvider",
    "ProtectorSnapshot",
    "ServicePrincipalAuth",
    "State",
    "TrackedProtector",
]
