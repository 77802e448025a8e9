"""Transparent data encryption handler implementing CRUD via azure-mgmt-sql."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError
from azure.mgmt.sql.models import (
    ManagedInstanceEncryptionProtector,
    ManagedInstanceKey,
    ServerKeyType,
)

from sqlmi_provisioner.core.state import ProtectorSnapshot
from sqlmi_provisioner.engine.errors import ResourceImportError
from sqlmi_provisioner.engine.polling import Timeouts, wait_for_completion
from sqlmi_provisioner.resources.ids import (
    EncryptionProtectorId,
    ManagedInstanceId,
    NestedItemId,
    ResourceIdError,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from azure.core.polling import LROPoller
    from azure.mgmt.sql import SqlManagementClient

    from sqlmi_provisioner.core.provider import AzureProvider
    from sqlmi_provisioner.resources.tde import TransparentDataEncryptionResource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProtectorKey:
    """Key settings submitted to the encryption protector."""

    server_key_name: str
    server_key_type: ServerKeyType
    key_vault_key_id: str = ""

    @property
    def is_key_vault(self) -> bool:
        return self.server_key_type == ServerKeyType.AZURE_KEY_VAULT


SERVICE_MANAGED = ProtectorKey(server_key_name="", server_key_type=ServerKeyType.SERVICE_MANAGED)


def protector_key(key_vault_key_id: str) -> ProtectorKey:
    """Resolve the protector key for a (possibly empty) Key Vault key ID.

    The managed instance key name has the form ``{vault}_{key}_{version}``.
    """
    key_vault_key_id = key_vault_key_id.strip()
    if not key_vault_key_id:
        return SERVICE_MANAGED

    try:
        key_id = NestedItemId.parse(key_vault_key_id)
    except ResourceIdError as exc:
        raise ValueError(f"Unable to parse key: {key_vault_key_id!r}: {exc}") from exc

    if key_id.nested_item_type != "keys":
        raise ValueError(
            f"Key vault key id must be a reference to a key, but got: {key_id.nested_item_type}"
        )

    return ProtectorKey(
        server_key_name=f"{key_id.vault_name}_{key_id.name}_{key_id.version}",
        server_key_type=ServerKeyType.AZURE_KEY_VAULT,
        key_vault_key_id=key_vault_key_id,
    )


class TransparentDataEncryptionHandler:
    """CRUD handler for managed instance encryption protectors.

    The protector cannot be deleted; it only switches between a Key Vault key
    and the service-managed key. Destroying the resource resets it to
    service-managed so that removing the key from Key Vault later cannot lock
    the instance out.
    """

    def __init__(self, provider: AzureProvider, timeouts: Timeouts | None = None) -> None:
        self._provider = provider
        self._timeouts = timeouts or Timeouts()

    @property
    def timeouts(self) -> Timeouts:
        return self._timeouts

    def _client(self, subscription_id: str) -> SqlManagementClient:
        return self._provider.sql_client(subscription_id)

    # -- validation -------------------------------------------------------

    def validate(self, desired: TransparentDataEncryptionResource) -> list[str]:
        if not desired.uses_key_vault:
            if desired.auto_rotation_enabled:
                return [
                    f"{desired.address}: auto_rotation_enabled requires key_vault_key_id; "
                    "the service-managed key is rotated by Azure"
                ]
            return []

        key_id = NestedItemId.parse(desired.key_vault_key_id)
        if key_id.nested_item_type != "keys":
            return [
                f"{desired.address}: key_vault_key_id must be a reference to a key, "
                f"but got: {key_id.nested_item_type}"
            ]
        if not key_id.version:
            return [
                f"{desired.address}: key_vault_key_id must include the key version "
                f"(got {desired.key_vault_key_id!r})"
            ]
        return []

    def validate_plan(self, resources: Sequence[TransparentDataEncryptionResource]) -> list[str]:
        """One protector per managed instance."""
        by_instance: dict[str, list[TransparentDataEncryptionResource]] = defaultdict(list)
        for r in resources:
            by_instance[r.instance_key].append(r)

        errors = []
        for claimants in by_instance.values():
            if len(claimants) > 1:
                addresses = ", ".join(sorted(r.address for r in claimants))
                errors.append(
                    f"managed instance {claimants[0].managed_instance_id} is configured "
                    f"by more than one resource: {addresses}"
                )
        return errors

    # -- CRUD -------------------------------------------------------------

    def _snapshot(
        self,
        protector_id: EncryptionProtectorId,
        protector: ManagedInstanceEncryptionProtector,
    ) -> ProtectorSnapshot:
        # Only Key Vault keys carry a URI and rotation setting.
        if protector.server_key_type == ServerKeyType.AZURE_KEY_VAULT:
            logger.debug("%s uses Key Vault key %s", protector_id, protector.uri)
            return ProtectorSnapshot(
                id=protector_id.id(),
                managed_instance_id=protector_id.managed_instance.id(),
                server_key_type=ServerKeyType.AZURE_KEY_VAULT.value,
                server_key_name=protector.server_key_name or "",
                key_vault_key_id=protector.uri or "",
                auto_rotation_enabled=bool(protector.auto_rotation_enabled),
            )
        return ProtectorSnapshot(
            id=protector_id.id(),
            managed_instance_id=protector_id.managed_instance.id(),
            server_key_type=ServerKeyType.SERVICE_MANAGED.value,
            server_key_name=protector.server_key_name or "",
        )

    def _get(
        self, protector_id: EncryptionProtectorId
    ) -> ManagedInstanceEncryptionProtector | None:
        client = self._client(protector_id.subscription_id)
        try:
            return client.managed_instance_encryption_protectors.get(
                protector_id.resource_group,
                protector_id.managed_instance_name,
                protector_id.name,
                timeout=self._timeouts.read,
            )
        except ResourceNotFoundError:
            return None
        except HttpResponseError as exc:
            raise RuntimeError(f"retrieving {protector_id}: {exc}") from exc

    def _submit(
        self,
        protector_id: EncryptionProtectorId,
        parameters: ManagedInstanceEncryptionProtector,
        *,
        verb: str,
        wait_verb: str,
        timeout: float,
    ) -> None:
        client = self._client(protector_id.subscription_id)
        try:
            poller: LROPoller[ManagedInstanceEncryptionProtector] = (
                client.managed_instance_encryption_protectors.begin_create_or_update(
                    protector_id.resource_group,
                    protector_id.managed_instance_name,
                    protector_id.name,
                    parameters,
                )
            )
        except HttpResponseError as exc:
            raise RuntimeError(f"{verb} {protector_id}: {exc}") from exc
        try:
            wait_for_completion(poller, timeout, str(protector_id))
        except HttpResponseError as exc:
            raise RuntimeError(f"{wait_verb} {protector_id}: {exc}") from exc

    def _ensure_instance_key(
        self,
        instance: ManagedInstanceId,
        key: ProtectorKey,
        timeout: float,
    ) -> None:
        """Register the Key Vault key on the managed instance."""
        client = self._client(instance.subscription_id)
        parameters = ManagedInstanceKey(
            server_key_type=ServerKeyType.AZURE_KEY_VAULT,
            uri=key.key_vault_key_id,
        )
        logger.debug("Registering key %s on %s", key.server_key_name, instance)
        try:
            poller = client.managed_instance_keys.begin_create_or_update(
                instance.resource_group,
                instance.name,
                key.server_key_name,
                parameters,
            )
        except HttpResponseError as exc:
            raise RuntimeError(
                f"creating/updating managed instance key for {instance}: {exc}"
            ) from exc
        try:
            wait_for_completion(poller, timeout, f"key registration on {instance}")
        except HttpResponseError as exc:
            raise RuntimeError(f"waiting on update of {instance}: {exc}") from exc

    def _apply(
        self,
        desired: TransparentDataEncryptionResource,
        *,
        verb: str,
        timeout: float,
    ) -> ProtectorSnapshot:
        instance = ManagedInstanceId.parse(desired.managed_instance_id)
        protector_id = EncryptionProtectorId.for_instance(instance)
        key = protector_key(desired.key_vault_key_id)

        if key.is_key_vault:
            self._ensure_instance_key(instance, key, timeout)

        logger.info(
            "%s %s (key type %s)", verb.capitalize(), protector_id, key.server_key_type.value
        )
        self._submit(
            protector_id,
            ManagedInstanceEncryptionProtector(
                server_key_name=key.server_key_name,
                server_key_type=key.server_key_type,
                auto_rotation_enabled=desired.auto_rotation_enabled,
            ),
            verb=verb,
            wait_verb=f"waiting for {verb} of",
            timeout=timeout,
        )

        current = self._get(protector_id)
        if current is None:
            raise RuntimeError(f"{protector_id} was not found after {verb}")
        return self._snapshot(protector_id, current)

    def create(self, desired: TransparentDataEncryptionResource) -> ProtectorSnapshot:
        """Point the protector at the desired key."""
        return self._apply(desired, verb="creating", timeout=self._timeouts.create)

    def update(
        self, desired: TransparentDataEncryptionResource, prior: ProtectorSnapshot
    ) -> ProtectorSnapshot:
        """Same request as create; the protector is updated in place."""
        logger.debug("Updating %s from key type %s", prior.id, prior.server_key_type)
        return self._apply(desired, verb="updating", timeout=self._timeouts.update)

    def read(self, protector_id: str) -> ProtectorSnapshot | None:
        parsed = EncryptionProtectorId.parse(protector_id)
        logger.debug("Reading %s", parsed)

        current = self._get(parsed)
        if current is None:
            logger.info("%s no longer exists", parsed)
            return None
        return self._snapshot(parsed, current)

    def delete(self, prior: ProtectorSnapshot) -> None:
        """Reset the protector to the service-managed key."""
        protector_id = EncryptionProtectorId.parse(prior.id)
        logger.info("Resetting %s to service-managed key", protector_id)
        self._submit(
            protector_id,
            ManagedInstanceEncryptionProtector(
                server_key_name=SERVICE_MANAGED.server_key_name,
                server_key_type=SERVICE_MANAGED.server_key_type,
            ),
            verb="updating",
            wait_verb="waiting on update future for",
            timeout=self._timeouts.delete,
        )

    def import_protector(self, resource_id: str) -> ProtectorSnapshot:
        """Read an existing protector by ID so it can be tracked in state."""
        try:
            protector_id = EncryptionProtectorId.parse(resource_id)
        except ResourceIdError as exc:
            raise ResourceImportError(str(exc)) from exc

        current = self._get(protector_id)
        if current is None:
            raise ResourceImportError(f"{protector_id} does not exist")
        return self._snapshot(protector_id, current)
