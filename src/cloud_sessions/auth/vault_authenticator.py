"""Human authentication against HashiCorp Vault.

Pattern: Vault as Identity Broker
----------------------------------
Vault holds the workspace encryption key and brokers every cloud credential
this tool hands out.  The user authenticates with Vault directly (userpass or
LDAP) and receives a token; that token is what the key provider and the
credential brokers present on the user's behalf.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any

import hvac
import hvac.exceptions

from cloud_sessions.auth.session import VaultSession

logger = logging.getLogger(__name__)


class VaultAuthenticationError(Exception):
    """Raised when Vault authentication fails."""


class VaultAuthenticator:
    """Authenticates a user via Vault and produces a ``VaultSession``."""

    def __init__(self, vault_addr: str, auth_method: str = "userpass") -> None:
        self._vault_addr = vault_addr
        self._auth_method = auth_method
        self._client = hvac.Client(url=vault_addr, token="")

    def authenticate(self, username: str, password: str) -> VaultSession:
        """Authenticate *username* and return an immutable ``VaultSession``.

        Raises ``VaultAuthenticationError`` on failure.
        """
        try:
            auth_response = self._login(username, password)
        except hvac.exceptions.VaultError as exc:
            raise VaultAuthenticationError(f"Vault login failed: {exc}") from exc

        client_token: str = auth_response["auth"]["client_token"]
        policies: list[str] = auth_response["auth"]["policies"]
        ttl: int = auth_response["auth"]["lease_duration"]

        logger.info("User %s authenticated via %s, policies=%s", username, self._auth_method, policies)

        return VaultSession(
            user_id=username,
            vault_token=client_token,
            token_policies=frozenset(policies),
            created_at=datetime.datetime.now(datetime.UTC),
            ttl_seconds=ttl,
        )

    # -- private helpers -----------------------------------------------------

    def _login(self, username: str, password: str) -> dict[str, Any]:
        if self._auth_method == "userpass":
            return self._client.auth.userpass.login(username=username, password=password)
        if self._auth_method == "ldap":
            return self._client.auth.ldap.login(username=username, password=password)
        raise VaultAuthenticationError(f"Unsupported auth method: {self._auth_method}")
