"""Lifecycle handler for Azure sessions.

An active Azure session is a short-lived service principal brokered by
Vault's Azure secrets engine and recorded in the Azure CLI's service
principal store, tagged with the session id so that any later process can
withdraw it again.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, cast

from cloud_sessions.auth.session import VaultSession
from cloud_sessions.lifecycle.base import SessionHandler
from cloud_sessions.lifecycle.errors import LifecycleError, ValidationError
from cloud_sessions.lifecycle.retry import RetryPolicy
from cloud_sessions.models.session import AzureSession, Session, SessionType
from cloud_sessions.providers.azure_principal_file import AzureServicePrincipalFile
from cloud_sessions.vault.azure_credentials import AzureCredentialBroker
from cloud_sessions.workspace.state import WorkspaceState

logger = logging.getLogger(__name__)


class AzureSessionHandler(SessionHandler):
    session_types = (SessionType.AZURE,)

    def __init__(
        self,
        workspace: WorkspaceState,
        vault_session: VaultSession,
        broker: AzureCredentialBroker,
        principal_file: AzureServicePrincipalFile,
        retry: RetryPolicy | None = None,
    ) -> None:
        super().__init__(workspace, retry)
        self._vault_session = vault_session
        self._broker = broker
        self._principal_file = principal_file
        self._leases: dict[str, str] = {}

    def _activate(self, session: Session) -> None:
        azure = cast(AzureSession, session)
        # Refreshing an active session replaces its principal.
        self._principal_file.remove_for_session(session.session_id)
        credentials = self._broker.get_credentials(self._vault_session, azure.vault_role)
        self._principal_file.upsert(
            credentials.client_id,
            azure.tenant_id,
            credentials.client_secret,
            session_id=session.session_id,
        )
        replaced = self._leases.pop(session.session_id, None)
        if credentials.lease_id:
            self._leases[session.session_id] = credentials.lease_id
        if replaced and replaced != credentials.lease_id:
            self._revoke(session, replaced)

    def _deactivate(self, session: Session) -> None:
        removed = self._principal_file.remove_for_session(session.session_id)
        lease_id = self._leases.pop(session.session_id, None)
        if lease_id:
            self._revoke(session, lease_id)
        logger.debug("Withdrew Azure principal(s) %s for %s", removed, session.session_name)

    def _revoke(self, session: Session, lease_id: str) -> None:
        try:
            self._broker.revoke_lease(self._vault_session, lease_id)
        except LifecycleError as exc:
            logger.warning("Lease %s for %s left to expire: %s", lease_id, session.session_name, exc)

    def _validate_patch(self, session: Session, patch: Mapping[str, Any]) -> None:
        super()._validate_patch(session, patch)
        if "tenant_id" in patch and not patch["tenant_id"]:
            raise ValidationError("Azure sessions need a tenant id")
