"""Role credentials from the AWS SSO (IAM Identity Center) portal.

The SSO login itself, the device-code dance that yields a portal access
token, happens outside this tool.  Whatever performs it stores the resulting
token in Vault under ``<app_id>/aws-sso``.  This module only trades that
token for role credentials through the portal's ``GetRoleCredentials`` API.
"""

from __future__ import annotations

import logging
import time

import hvac.exceptions
import httpx
import requests

from cloud_sessions.auth.session import VaultSession
from cloud_sessions.lifecycle.errors import (
    CredentialAcquisitionError,
    ProviderUnavailable,
)
from cloud_sessions.vault.aws_credentials import AWSCredentials
from cloud_sessions.vault.errors import translate_vault_error
from cloud_sessions.vault.kv_store import VaultKVStore

logger = logging.getLogger(__name__)

SSO_SECRET_NAME = "aws-sso"


def portal_endpoint(region: str) -> str:
    return f"https://portal.sso.{region}.amazonaws.com"


class SsoPortalClient:
    """Calls ``GET /federation/credentials`` with the stored access token."""

    def __init__(self, kv_store: VaultKVStore, timeout: float = 30.0) -> None:
        self._kv = kv_store
        self._timeout = timeout

    def access_token(self, session: VaultSession) -> str:
        try:
            secret = self._kv.read(session, SSO_SECRET_NAME)
        except (hvac.exceptions.VaultError, requests.exceptions.RequestException) as exc:
            raise translate_vault_error(exc, "Cannot read the AWS SSO access token") from exc
        if not secret or not secret.get("access_token"):
            raise CredentialAcquisitionError("No AWS SSO access token stored, log in to AWS SSO first")
        return secret["access_token"]

    def get_role_credentials(
        self,
        session: VaultSession,
        region: str,
        account_id: str,
        role_name: str,
    ) -> AWSCredentials:
        token = self.access_token(session)
        url = f"{portal_endpoint(region)}/federation/credentials"
        try:
            with httpx.Client(timeout=self._timeout) as client:
                resp = client.get(
                    url,
                    params={"account_id": account_id, "role_name": role_name},
                    headers={"x-amz-sso_bearer_token": token},
                )
                resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status == 429 or status >= 500:
                raise ProviderUnavailable(f"AWS SSO portal returned {status}") from exc
            raise CredentialAcquisitionError(
                f"AWS SSO portal refused credentials for {account_id}/{role_name}: HTTP {status}"
            ) from exc
        except httpx.RequestError as exc:
            raise ProviderUnavailable(f"Cannot reach AWS SSO portal at {url}: {exc}") from exc

        creds = resp.json()["roleCredentials"]
        logger.info("Issued AWS SSO credentials for account=%s, role=%s", account_id, role_name)
        return AWSCredentials(
            access_key_id=creds["accessKeyId"],
            secret_access_key=creds["secretAccessKey"],
            session_token=creds.get("sessionToken"),
            lease_id=None,
            ttl_seconds=max(0, int(creds.get("expiration", 0) / 1000 - time.time())),
        )
