"""Dispatch from a session's type tag to its lifecycle handler.

Pattern: Dispatch Table
------------------------
The table is built once at startup from handler instances; each handler
declares the ``SessionType`` values it serves.  Callers never inspect a
session's type to decide what to do with it; they ask the registry.
"""

from __future__ import annotations

import logging
from typing import Iterable

from cloud_sessions.auth.session import VaultSession
from cloud_sessions.lifecycle.aws import (
    AwsIamRoleChainedHandler,
    AwsIamRoleFederatedHandler,
    AwsIamUserHandler,
    AwsSessionHandler,
    AwsSsoRoleHandler,
)
from cloud_sessions.lifecycle.azure import AzureSessionHandler
from cloud_sessions.lifecycle.base import SessionHandler
from cloud_sessions.lifecycle.errors import UnsupportedSessionType
from cloud_sessions.lifecycle.retry import RetryPolicy
from cloud_sessions.models.session import SessionType
from cloud_sessions.providers.aws_credentials_file import AwsCredentialsFile
from cloud_sessions.providers.azure_principal_file import AzureServicePrincipalFile
from cloud_sessions.settings import Settings
from cloud_sessions.vault.aws_credentials import AWSCredentialBroker
from cloud_sessions.vault.azure_credentials import AzureCredentialBroker
from cloud_sessions.vault.kv_store import VaultKVStore
from cloud_sessions.vault.sso_portal import SsoPortalClient
from cloud_sessions.workspace.state import WorkspaceState

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(self, workspace: WorkspaceState, handlers: Iterable[SessionHandler]) -> None:
        self._workspace = workspace
        self._handlers: dict[SessionType, SessionHandler] = {}
        for handler in handlers:
            for session_type in handler.session_types:
                if session_type in self._handlers:
                    raise ValueError(f"Two handlers registered for {session_type.value}")
                self._handlers[session_type] = handler
            handler.attach(self)

    @property
    def workspace(self) -> WorkspaceState:
        return self._workspace

    def supported_types(self) -> list[SessionType]:
        return list(self._handlers)

    def handler_for(self, session_type: SessionType) -> SessionHandler:
        try:
            return self._handlers[session_type]
        except KeyError:
            raise UnsupportedSessionType(f"No handler registered for {session_type.value}") from None

    def handler_for_session(self, session_id: str) -> SessionHandler:
        return self.handler_for(self._workspace.get_session(session_id).type)

    def aws_handler_for_session(self, session_id: str) -> AwsSessionHandler:
        handler = self.handler_for_session(session_id)
        if not isinstance(handler, AwsSessionHandler):
            raise UnsupportedSessionType(f"Session {session_id} is not an AWS session")
        return handler


def build_registry(
    settings: Settings,
    workspace: WorkspaceState,
    vault_session: VaultSession,
) -> SessionRegistry:
    """Wire the production handlers for every supported session type."""
    retry = RetryPolicy(max_retries=settings.max_retries, base_delay=settings.base_delay)
    aws_broker = AWSCredentialBroker(vault_addr=settings.vault_addr, aws_mount=settings.aws_mount)
    azure_broker = AzureCredentialBroker(vault_addr=settings.vault_addr, azure_mount=settings.azure_mount)
    kv_store = VaultKVStore(settings.vault_addr, app_id=settings.app_id, kv_mount=settings.kv_mount)
    credentials_file = AwsCredentialsFile(settings.aws_credentials_file)

    aws_args = (workspace, vault_session, credentials_file)
    handlers: list[SessionHandler] = [
        AwsIamUserHandler(*aws_args, broker=aws_broker, retry=retry),
        AwsIamRoleFederatedHandler(*aws_args, broker=aws_broker, retry=retry),
        AwsIamRoleChainedHandler(*aws_args, broker=aws_broker, retry=retry),
        AwsSsoRoleHandler(
            *aws_args,
            portal=SsoPortalClient(kv_store, timeout=settings.sso_portal_timeout),
            retry=retry,
        ),
        AzureSessionHandler(
            workspace,
            vault_session,
            broker=azure_broker,
            principal_file=AzureServicePrincipalFile(settings.azure_principal_file),
            retry=retry,
        ),
    ]
    logger.debug("Registered handlers for %s", [t.value for h in handlers for t in h.session_types])
    return SessionRegistry(workspace, handlers)
