"""Parsing for Azure resource IDs and Key Vault item IDs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Self
from urllib.parse import urlsplit

_SQL_NAMESPACE = "Microsoft.Sql"
_MANAGED_INSTANCES = "managedInstances"
_ENCRYPTION_PROTECTOR = "encryptionProtector"

NESTED_ITEM_TYPES: frozenset[str] = frozenset({"keys", "secrets", "certificates"})


class ResourceIdError(ValueError):
    """Raised when an identifier does not have the expected shape."""


def _segments(resource_id: str) -> list[str]:
    if not resource_id.startswith("/"):
        raise ResourceIdError(f"ID must start with '/': {resource_id!r}")
    parts = resource_id.strip("/").split("/")
    if any(not p for p in parts):
        raise ResourceIdError(f"ID contains an empty segment: {resource_id!r}")
    return parts


def _parse_instance_segments(parts: list[str], resource_id: str) -> tuple[str, str, str]:
    """Validate the first eight segments of a managed instance ID."""
    if len(parts) < 8:
        raise ResourceIdError(f"Not a managed instance ID: {resource_id!r}")
    subs, sub_id, rgs, rg, providers, namespace, kind, name = parts[:8]
    if subs != "subscriptions" or rgs != "resourceGroups" or providers != "providers":
        raise ResourceIdError(
            f"Expected /subscriptions/{{id}}/resourceGroups/{{name}}/providers/...: {resource_id!r}"
        )
    if namespace.lower() != _SQL_NAMESPACE.lower() or kind.lower() != _MANAGED_INSTANCES.lower():
        raise ResourceIdError(
            f"Expected provider {_SQL_NAMESPACE}/{_MANAGED_INSTANCES}, "
            f"got {namespace}/{kind}: {resource_id!r}"
        )
    return sub_id, rg, name


@dataclass(frozen=True)
class ManagedInstanceId:
    """ID of an Azure SQL Managed Instance."""

    subscription_id: str
    resource_group: str
    name: str

    @classmethod
    def parse(cls, resource_id: str) -> Self:
        parts = _segments(resource_id)
        sub_id, rg, name = _parse_instance_segments(parts, resource_id)
        if len(parts) != 8:
            raise ResourceIdError(f"Unexpected trailing segments in {resource_id!r}")
        return cls(subscription_id=sub_id, resource_group=rg, name=name)

    def id(self) -> str:
        return (
            f"/subscriptions/{self.subscription_id}/resourceGroups/{self.resource_group}"
            f"/providers/{_SQL_NAMESPACE}/{_MANAGED_INSTANCES}/{self.name}"
        )

    def __str__(self) -> str:
        return (
            f"Managed Instance {self.name!r} "
            f"(Resource Group {self.resource_group!r}, Subscription {self.subscription_id!r})"
        )


@dataclass(frozen=True)
class EncryptionProtectorId:
    """ID of a managed instance encryption protector (always named ``current``)."""

    subscription_id: str
    resource_group: str
    managed_instance_name: str
    name: str = "current"

    @classmethod
    def for_instance(cls, instance: ManagedInstanceId) -> Self:
        return cls(
            subscription_id=instance.subscription_id,
            resource_group=instance.resource_group,
            managed_instance_name=instance.name,
        )

    @classmethod
    def parse(cls, resource_id: str) -> Self:
        parts = _segments(resource_id)
        sub_id, rg, instance_name = _parse_instance_segments(parts, resource_id)
        if len(parts) != 10 or parts[8] != _ENCRYPTION_PROTECTOR:
            raise ResourceIdError(
                f"Expected .../{_MANAGED_INSTANCES}/{{name}}/{_ENCRYPTION_PROTECTOR}/{{name}}: "
                f"{resource_id!r}"
            )
        return cls(
            subscription_id=sub_id,
            resource_group=rg,
            managed_instance_name=instance_name,
            name=parts[9],
        )

    @property
    def managed_instance(self) -> ManagedInstanceId:
        return ManagedInstanceId(
            subscription_id=self.subscription_id,
            resource_group=self.resource_group,
            name=self.managed_instance_name,
        )

    def id(self) -> str:
        return f"{self.managed_instance.id()}/{_ENCRYPTION_PROTECTOR}/{self.name}"

    def __str__(self) -> str:
        return (
            f"Managed Instance Encryption Protector {self.name!r} "
            f"(Managed Instance {self.managed_instance_name!r}, "
            f"Resource Group {self.resource_group!r}, Subscription {self.subscription_id!r})"
        )


@dataclass(frozen=True)
class NestedItemId:
    """A Key Vault key, secret or certificate URL.

    ``https://{vault}.vault.azure.net/{type}/{name}[/{version}]``
    """

    vault_base_url: str
    nested_item_type: str
    name: str
    version: str = ""

    @classmethod
    def parse(cls, item_id: str) -> Self:
        try:
            parts = urlsplit(item_id)
        except ValueError as exc:
            raise ResourceIdError(f"Unable to parse Key Vault item ID {item_id!r}: {exc}") from exc
        if parts.scheme != "https" or not parts.hostname:
            raise ResourceIdError(f"Key Vault item ID must be an https URL: {item_id!r}")

        path = [p for p in parts.path.split("/") if p]
        if len(path) not in (2, 3):
            raise ResourceIdError(
                f"Key Vault item ID should have 2 or 3 path segments, got {len(path)}: {item_id!r}"
            )
        if path[0] not in NESTED_ITEM_TYPES:
            raise ResourceIdError(
                f"Key Vault item type must be one of {sorted(NESTED_ITEM_TYPES)}, "
                f"got {path[0]!r}: {item_id!r}"
            )

        base = f"{parts.scheme}://{parts.netloc}/"
        version = path[2] if len(path) == 3 else ""
        return cls(vault_base_url=base, nested_item_type=path[0], name=path[1], version=version)

    @property
    def vault_name(self) -> str:
        """First DNS label of the vault host (``myvault`` in ``myvault.vault.azure.net``)."""
        host = urlsplit(self.vault_base_url).hostname or ""
        return host.split(".")[0]

    def id(self) -> str:
        segments = [self.nested_item_type, self.name]
        if self.version:
            segments.append(self.version)
        return self.vault_base_url + "/".join(segments)
