"""Azure provider - credentials and SQL management clients."""

from __future__ import annotations

import logging
from functools import cached_property
from typing import TYPE_CHECKING, Any, Self

from azure.identity import ClientSecretCredential, DefaultAzureCredential
from azure.mgmt.sql import SqlManagementClient
from pydantic import BaseModel, ConfigDict, PrivateAttr, SecretStr

if TYPE_CHECKING:
    from azure.core.credentials import TokenCredential

logger = logging.getLogger(__name__)


class ServicePrincipalAuth(BaseModel):
    """Client-secret authentication for a service principal."""

    tenant_id: str
    client_id: str
    client_secret: SecretStr


class AzureProvider(BaseModel):
    """Connection configuration for Azure Resource Manager.

    Without explicit auth the ``DefaultAzureCredential`` chain is used
    (environment, workload identity, managed identity, Azure CLI, ...).
    For tests or embedding, inject a pre-built client with ``from_client``.

    Examples:
        # Service principal
        provider = AzureProvider(
            auth=ServicePrincipalAuth(
                tenant_id="...", client_id="...", client_secret="...",
            ),
        )

        # Ambient credentials (az login, managed identity)
        provider = AzureProvider()
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    auth: ServicePrincipalAuth | None = None

    _injected_client: Any = PrivateAttr(default=None)
    _clients: dict[str, SqlManagementClient] = PrivateAttr(default_factory=dict)

    @classmethod
    def from_client(cls, client: Any) -> Self:
        """Create a provider that returns *client* for every subscription.

        Args:
            client: A pre-configured ``SqlManagementClient`` (or a test double)
        """
        provider = cls()
        provider._injected_client = client
        return provider

    @cached_property
    def credential(self) -> TokenCredential:
        """Credential shared by all clients of this provider."""
        if self.auth is not None:
            logger.debug("Using service principal %s", self.auth.client_id)
            return ClientSecretCredential(
                tenant_id=self.auth.tenant_id,
                client_id=self.auth.client_id,
                client_secret=self.auth.client_secret.get_secret_value(),
            )
        logger.debug("Using DefaultAzureCredential chain")
        return DefaultAzureCredential(exclude_interactive_browser_credential=True)

    def sql_client(self, subscription_id: str) -> SqlManagementClient:
        """Get the SQL management client for a subscription."""
        if self._injected_client is not None:
            return self._injected_client

        client = self._clients.get(subscription_id)
        if client is None:
            client = SqlManagementClient(
                credential=self.credential,
                subscription_id=subscription_id,
            )
            self._clients[subscription_id] = client
        return client
