"""AWS credential retrieval from Vault's AWS secrets engine.

Pattern: Credential Brokering
------------------------------
No component of this tool holds long-lived AWS keys.  Every AWS session is
backed by a Vault role on the AWS secrets engine:

  - IAM user sessions ask the role for ``iam_user`` or ``federation_token``
    credentials, whatever the Vault role is configured to issue.
  - Federated role sessions pass their ``role_arn`` so Vault returns
    ``assumed_role`` credentials for exactly that role.
  - Chained role sessions are brokered through the Vault role of the session
    at the root of their chain, with their own ``role_arn``.

Each issue creates a Vault lease.  ``revoke_lease`` ends it, which for
dynamic IAM users deletes the user on the AWS side as well.
"""

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
class AWSCredentials:
    """A temporary AWS credential bundle."""

    access_key_id: str
    secret_access_key: str
    session_token: str | None
    lease_id: str | None
    ttl_seconds: int

    def as_env(self, region: str | None = None) -> dict[str, str]:
        env = {
            "AWS_ACCESS_KEY_ID": self.access_key_id,
            "AWS_SECRET_ACCESS_KEY": self.secret_access_key,
        }
        if self.session_token:
            env["AWS_SESSION_TOKEN"] = self.session_token
        if region:
            env["AWS_DEFAULT_REGION"] = region
        return env


class AWSCredentialBroker:
    """Fetches temporary AWS credentials from Vault's AWS secrets engine."""

    def __init__(self, vault_addr: str, aws_mount: str = "aws") -> None:
        self._vault_addr = vault_addr
        self._aws_mount = aws_mount

    def get_credentials(
        self,
        session: VaultSession,
        vault_role: str,
        role_arn: str | None = None,
        ttl: str | None = None,
    ) -> AWSCredentials:
        """Issue credentials from *vault_role*, assuming *role_arn* when given.

        Uses the *session's* Vault token so Vault enforces the user's own
        policies on the AWS engine path.
        """
        if session.is_expired:
            raise CredentialAcquisitionError("Vault session has expired, re-authenticate")
        if not vault_role:
            raise CredentialAcquisitionError("Session has no Vault role configured")

        client = hvac.Client(url=self._vault_addr, token=session.vault_token)
        try:
            response = client.secrets.aws.generate_credentials(
                name=vault_role,
                role_arn=role_arn,
                ttl=ttl,
                mount_point=self._aws_mount,
            )
        except (hvac.exceptions.VaultError, requests.exceptions.RequestException) as exc:
            raise translate_vault_error(
                exc, f"Vault AWS credential generation failed for role={vault_role}"
            ) from exc

        data = response["data"]
        logger.info(
            "Issued AWS credentials for vault_role=%s, role_arn=%s, user=%s, ttl=%ss",
            vault_role,
            role_arn,
            session.user_id,
            response.get("lease_duration", "unknown"),
        )
        return AWSCredentials(
            access_key_id=data["access_key"],
            secret_access_key=data["secret_key"],
            session_token=data.get("security_token") or data.get("session_token"),
            lease_id=response.get("lease_id") or None,
            ttl_seconds=response.get("lease_duration", 3600),
        )

    def revoke_lease(self, session: VaultSession, lease_id: str) -> None:
        client = hvac.Client(url=self._vault_addr, token=session.vault_token)
        try:
            client.sys.revoke_lease(lease_id=lease_id)
        except (hvac.exceptions.VaultError, requests.exceptions.RequestException) as exc:
            raise translate_vault_error(exc, f"Vault lease revocation failed for {lease_id}") from exc
        logger.info("Revoked AWS lease %s", lease_id)
