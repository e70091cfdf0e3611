"""Azure service principal credentials from Vault's Azure secrets engine."""

from __future__ import annotations

import dataclasses
import logging

import hvac
import hvac.exceptions
import requests

from cloud_sessions.auth.session import VaultSession
from cloud_sessions.lifecycle.errors import CredentialAcquisitionError
from cloud_sessions.vault.errors import translate_vault_error

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class AzureCredentials:
    client_id: str
    client_secret: str
    lease_id: str | None
    ttl_seconds: int


class AzureCredentialBroker:
    """Fetches short-lived service principals from Vault's Azure secrets engine."""

    def __init__(self, vault_addr: str, azure_mount: str = "azure") -> None:
        self._vault_addr = vault_addr
        self._azure_mount = azure_mount

    def get_credentials(self, session: VaultSession, vault_role: str) -> AzureCredentials:
        if session.is_expired:
            raise CredentialAcquisitionError("Vault session has expired, re-authenticate")
        if not vault_role:
            raise CredentialAcquisitionError("Session has no Vault role configured")

        client = hvac.Client(url=self._vault_addr, token=session.vault_token)
        try:
            # Raw read rather than secrets.azure.generate_credentials, which
            # drops the lease id we need for revocation.
            response = client.read(f"{self._azure_mount}/creds/{vault_role}")
        except (hvac.exceptions.VaultError, requests.exceptions.RequestException) as exc:
            raise translate_vault_error(
                exc, f"Vault Azure credential generation failed for role={vault_role}"
            ) from exc
        if not response or "data" not in response:
            raise CredentialAcquisitionError(f"Vault returned no Azure credentials for role={vault_role}")

        data = response["data"]
        logger.info(
            "Issued Azure service principal %s for vault_role=%s, user=%s",
            data["client_id"],
            vault_role,
            session.user_id,
        )
        return AzureCredentials(
            client_id=data["client_id"],
            client_secret=data["client_secret"],
            lease_id=response.get("lease_id") or None,
            ttl_seconds=response.get("lease_duration", 3600),
        )

    def revoke_lease(self, session: VaultSession, lease_id: str) -> None:
        client = hvac.Client(url=self._vault_addr, token=session.vault_token)
        try:
            client.sys.revoke_lease(lease_id=lease_id)
        except (hvac.exceptions.VaultError, requests.exceptions.RequestException) as exc:
            raise translate_vault_error(exc, f"Vault lease revocation failed for {lease_id}") from exc
        logger.info("Revoked Azure lease %s", lease_id)
