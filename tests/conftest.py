"""Shared fixtures for tests."""

from __future__ import annotations

import pathlib
from unittest.mock import MagicMock

import pytest
from cryptography.fernet import Fernet

from cloud_sessions.auth.session import VaultSession
from cloud_sessions.lifecycle.aws import (
    AwsIamRoleChainedHandler,
    AwsIamRoleFederatedHandler,
    AwsIamUserHandler,
    AwsSsoRoleHandler,
)
from cloud_sessions.lifecycle.azure import AzureSessionHandler
from cloud_sessions.lifecycle.registry import SessionRegistry
from cloud_sessions.lifecycle.retry import RetryPolicy
from cloud_sessions.models.session import (
    AwsIamRoleChainedSession,
    AwsIamRoleFederatedSession,
    AwsIamUserSession,
    AzureSession,
)
from cloud_sessions.providers.aws_credentials_file import AwsCredentialsFile
from cloud_sessions.providers.azure_principal_file import AzureServicePrincipalFile
from cloud_sessions.storage.encrypted_store import EncryptedStore
from cloud_sessions.storage.keys import StaticKeyProvider
from cloud_sessions.vault.aws_credentials import AWSCredentialBroker, AWSCredentials
from cloud_sessions.vault.azure_credentials import AzureCredentialBroker, AzureCredentials
from cloud_sessions.vault.sso_portal import SsoPortalClient
from cloud_sessions.workspace.state import WorkspaceState


def make_aws_credentials(suffix: str = "1", lease_id: str | None = "aws/creds/prod/lease-1") -> AWSCredentials:
    return AWSCredentials(
        access_key_id=f"ASIA{suffix}",
        secret_access_key=f"secret-{suffix}",
        session_token=f"token-{suffix}",
        lease_id=lease_id,
        ttl_seconds=900,
    )


@pytest.fixture
def key_provider() -> StaticKeyProvider:
    return StaticKeyProvider(Fernet.generate_key())


@pytest.fixture
def store(tmp_path: pathlib.Path, key_provider: StaticKeyProvider) -> EncryptedStore:
    return EncryptedStore(tmp_path / "home" / ".cloud-sessions" / "workspace.enc", key_provider)


@pytest.fixture
def workspace(store: EncryptedStore) -> WorkspaceState:
    return WorkspaceState(store)


@pytest.fixture
def vault_session() -> VaultSession:
    return VaultSession.from_token("s.fake-token", ttl_seconds=3600, user_id="alice")


@pytest.fixture
def retry() -> RetryPolicy:
    return RetryPolicy(max_retries=2, base_delay=0.0, sleep=lambda _: None)


@pytest.fixture
def aws_broker() -> MagicMock:
    broker = MagicMock(spec=AWSCredentialBroker)
    broker.get_credentials.return_value = make_aws_credentials()
    return broker


@pytest.fixture
def azure_broker() -> MagicMock:
    broker = MagicMock(spec=AzureCredentialBroker)
    broker.get_credentials.return_value = AzureCredentials(
        client_id="client-1",
        client_secret="sp-secret",
        lease_id="azure/creds/dev/lease-1",
        ttl_seconds=3600,
    )
    return broker


@pytest.fixture
def sso_portal() -> MagicMock:
    portal = MagicMock(spec=SsoPortalClient)
    portal.get_role_credentials.return_value = make_aws_credentials("sso", lease_id=None)
    return portal


@pytest.fixture
def credentials_file(tmp_path: pathlib.Path) -> AwsCredentialsFile:
    return AwsCredentialsFile(tmp_path / "aws" / "credentials")


@pytest.fixture
def principal_file(tmp_path: pathlib.Path) -> AzureServicePrincipalFile:
    return AzureServicePrincipalFile(tmp_path / "azure" / "service_principal_entries.json")


@pytest.fixture
def registry(
    workspace: WorkspaceState,
    vault_session: VaultSession,
    credentials_file: AwsCredentialsFile,
    principal_file: AzureServicePrincipalFile,
    aws_broker: MagicMock,
    azure_broker: MagicMock,
    sso_portal: MagicMock,
    retry: RetryPolicy,
) -> SessionRegistry:
    aws_args = (workspace, vault_session, credentials_file)
    return SessionRegistry(
        workspace,
        [
            AwsIamUserHandler(*aws_args, broker=aws_broker, retry=retry),
            AwsIamRoleFederatedHandler(*aws_args, broker=aws_broker, retry=retry),
            AwsIamRoleChainedHandler(*aws_args, broker=aws_broker, retry=retry),
            AwsSsoRoleHandler(*aws_args, portal=sso_portal, retry=retry),
            AzureSessionHandler(
                workspace,
                vault_session,
                broker=azure_broker,
                principal_file=principal_file,
                retry=retry,
            ),
        ],
    )


@pytest.fixture
def federated_session(workspace: WorkspaceState) -> AwsIamRoleFederatedSession:
    session = AwsIamRoleFederatedSession(
        session_id="sess-1",
        session_name="prod-admin",
        region="us-east-1",
        profile_id=workspace.get_default_profile_id(),
        role_arn="arn:aws:iam::123456789012:role/Admin",
        vault_role="prod",
    )
    workspace.add_session(session)
    return session


@pytest.fixture
def iam_user_session(workspace: WorkspaceState) -> AwsIamUserSession:
    session = AwsIamUserSession(
        session_id="user-1",
        session_name="dev-user",
        region="eu-west-1",
        profile_id=workspace.get_default_profile_id(),
        vault_role="dev-user",
    )
    workspace.add_session(session)
    return session


@pytest.fixture
def azure_session(workspace: WorkspaceState) -> AzureSession:
    session = AzureSession(
        session_id="az-1",
        session_name="dev-subscription",
        region="westeurope",
        tenant_id="tenant-1",
        subscription_id="sub-1",
        vault_role="dev",
    )
    workspace.add_session(session)
    return session


@pytest.fixture
def add_chained(workspace: WorkspaceState):
    """Factory fixture: add a chained session under *parent_id* and return it."""

    def _add(session_id: str, parent_id: str, name: str | None = None) -> AwsIamRoleChainedSession:
        session = AwsIamRoleChainedSession(
            session_id=session_id,
            session_name=name or session_id,
            region="us-east-1",
            profile_id=workspace.get_default_profile_id(),
            role_arn=f"arn:aws:iam::210987654321:role/{session_id}",
            parent_session_id=parent_id,
        )
        workspace.add_session(session)
        return session

    return _add
