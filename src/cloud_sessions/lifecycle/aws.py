"""Lifecycle handlers for AWS sessions.

All AWS variants activate the same way: obtain a temporary credential bundle
and write it to the shared AWS credentials file under the session's profile
name.  They differ only in *how* the bundle is obtained, which is what each
concrete handler's ``_acquire`` implements:

  - ``AwsIamUserHandler``: the session's own Vault AWS role.
  - ``AwsIamRoleFederatedHandler``: the session's Vault role, assuming its
    ``role_arn``.
  - ``AwsIamRoleChainedHandler``: the Vault role of the session at the root of
    the trust chain, assuming the chained session's own ``role_arn``.
  - ``AwsSsoRoleHandler``: the AWS SSO portal, using the stored portal token.

Sessions that reach their credentials through another session are that
session's *trusters*.  ``list_truster`` finds them (transitively, in list
order) so a delete can warn about them and cascade to them.
"""

from __future__ import annotations

import abc
import datetime
import logging
from typing import Any, Mapping, cast

from cloud_sessions.audit import log_session_event
from cloud_sessions.auth.session import VaultSession
from cloud_sessions.lifecycle.base import SessionHandler
from cloud_sessions.lifecycle.errors import (
    CredentialAcquisitionError,
    LifecycleError,
    ValidationError,
)
from cloud_sessions.lifecycle.retry import RetryPolicy
from cloud_sessions.models.session import (
    AwsIamRoleChainedSession,
    AwsIamRoleFederatedSession,
    AwsIamUserSession,
    AwsSsoRoleSession,
    Session,
    SessionStatus,
    SessionType,
    profile_id_of,
    split_role_arn,
)
from cloud_sessions.providers.aws_credentials_file import AwsCredentialsFile
from cloud_sessions.vault.aws_credentials import AWSCredentialBroker, AWSCredentials
from cloud_sessions.vault.sso_portal import SsoPortalClient
from cloud_sessions.workspace.state import WorkspaceState

logger = logging.getLogger(__name__)


class AwsSessionHandler(SessionHandler):
    """Shared behaviour of every AWS session variant."""

    def __init__(
        self,
        workspace: WorkspaceState,
        vault_session: VaultSession,
        credentials_file: AwsCredentialsFile,
        broker: AWSCredentialBroker | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        super().__init__(workspace, retry)
        self._vault_session = vault_session
        self._credentials_file = credentials_file
        self._broker = broker
        # session_id -> Vault lease of the credentials currently written out.
        self._leases: dict[str, str] = {}

    # -- AWS-only operations --------------------------------------------------

    def generate_credentials(self, session_id: str) -> AWSCredentials:
        """Issue a fresh credential bundle without touching the session's status.

        Used by tooling that needs short-lived credentials for the session's
        account while leaving the credentials file alone.
        """
        session = self._get(session_id)
        return self._retry.call(
            lambda: self._acquire(session),
            f"credentials for {session.session_name}",
        )

    def list_truster(self, session: Session) -> list[Session]:
        """Sessions whose chain of trust leads back to *session*, in list order."""
        sessions = self._workspace.sessions()
        by_id = {s.session_id: s for s in sessions}
        trusters = []
        for candidate in sessions:
            if candidate.session_id == session.session_id:
                continue
            if session.session_id in _ancestor_ids(candidate, by_id):
                trusters.append(candidate)
        return trusters

    def delete(self, session_id: str, cascade: bool = True) -> list[Session]:
        """Delete the session; with *cascade*, its truster sessions first.

        Without *cascade* the trusters are left in place, orphaned: they will
        fail to start until re-parented or deleted.
        """
        session = self._get(session_id)
        # A failed stop must leave the whole chain in place.
        self.stop(session_id)
        trusters = self.list_truster(session)
        removed: list[Session] = []
        if trusters and cascade:
            by_id = {s.session_id: s for s in self._workspace.sessions()}
            # Deepest first, so no truster is ever deleted before its own trusters.
            ordered = sorted(trusters, key=lambda t: len(_ancestor_ids(t, by_id)), reverse=True)
            for truster in ordered:
                current = self._workspace.find_session(truster.session_id)
                if current is not None:
                    removed.extend(self._handler_for(current).delete(current.session_id, cascade=False))
        elif trusters:
            logger.warning(
                "Deleting %s leaves %d truster session(s) orphaned: %s",
                session.session_name,
                len(trusters),
                [t.session_name for t in trusters],
            )
        removed.extend(super().delete(session_id))
        return removed

    # -- SessionHandler hooks --------------------------------------------------

    def _before_start(self, session: Session) -> None:
        # Sessions sharing a profile would overwrite each other's credentials.
        profile_id = profile_id_of(session)
        for other in self._workspace.sessions():
            if (
                other.session_id != session.session_id
                and other.type.is_aws
                and other.status is not SessionStatus.INACTIVE
                and profile_id_of(other) == profile_id
            ):
                logger.info(
                    "Stopping %s, it shares profile %s with %s",
                    other.session_name,
                    profile_id,
                    session.session_name,
                )
                self._handler_for(other).stop(other.session_id)

    def _activate(self, session: Session) -> None:
        credentials = self._acquire(session)
        profile_name = self._workspace.get_profile_name(profile_id_of(session))
        self._credentials_file.write_profile(profile_name, credentials, session.region)
        replaced = self._leases.pop(session.session_id, None)
        if credentials.lease_id:
            self._leases[session.session_id] = credentials.lease_id
        if replaced and replaced != credentials.lease_id:
            self._revoke(session, replaced)

    def _deactivate(self, session: Session) -> None:
        profile_name = self._workspace.get_profile_name(profile_id_of(session))
        self._credentials_file.remove_profile(profile_name)
        lease_id = self._leases.pop(session.session_id, None)
        if lease_id:
            self._revoke(session, lease_id)

    def _revoke(self, session: Session, lease_id: str) -> None:
        if self._broker is None:
            return
        try:
            self._broker.revoke_lease(self._vault_session, lease_id)
        except LifecycleError as exc:
            logger.warning("Lease %s for %s left to expire: %s", lease_id, session.session_name, exc)

    def _validate_patch(self, session: Session, patch: Mapping[str, Any]) -> None:
        super()._validate_patch(session, patch)
        if "role_arn" in patch:
            check_role_arn(patch["role_arn"])

    @abc.abstractmethod
    def _acquire(self, session: Session) -> AWSCredentials:
        """Obtain a credential bundle for *session*."""

    def _require_broker(self) -> AWSCredentialBroker:
        if self._broker is None:
            raise CredentialAcquisitionError(f"{type(self).__name__} has no Vault AWS broker")
        return self._broker


class AwsIamUserHandler(AwsSessionHandler):
    session_types = (SessionType.AWS_IAM_USER,)

    def _acquire(self, session: Session) -> AWSCredentials:
        user = cast(AwsIamUserSession, session)
        return self._require_broker().get_credentials(self._vault_session, user.vault_role)


class AwsIamRoleFederatedHandler(AwsSessionHandler):
    session_types = (SessionType.AWS_IAM_ROLE_FEDERATED,)

    def _acquire(self, session: Session) -> AWSCredentials:
        federated = cast(AwsIamRoleFederatedSession, session)
        return self._require_broker().get_credentials(
            self._vault_session,
            federated.vault_role,
            role_arn=federated.role_arn,
        )


class AwsIamRoleChainedHandler(AwsSessionHandler):
    """Role chaining brokered through the root session's Vault role.

    The root's Vault role must be an ``assumed_role`` role that lists the
    chained ``role_arn`` among its allowed ARNs.
    """

    session_types = (SessionType.AWS_IAM_ROLE_CHAINED,)

    def _acquire(self, session: Session) -> AWSCredentials:
        chained = cast(AwsIamRoleChainedSession, session)
        root = self.trust_root(chained)
        vault_role = getattr(root, "vault_role", "")
        if not vault_role:
            raise CredentialAcquisitionError(
                f"Cannot chain {chained.session_name} from {root.type.value} session {root.session_name}"
            )
        return self._require_broker().get_credentials(
            self._vault_session,
            vault_role,
            role_arn=chained.role_arn,
        )

    def trust_root(self, session: AwsIamRoleChainedSession) -> Session:
        """Follow ``parent_session_id`` links up to the first non-chained session."""
        seen = {session.session_id}
        current: Session = session
        while isinstance(current, AwsIamRoleChainedSession):
            parent = self._workspace.find_session(current.parent_session_id)
            if parent is None:
                raise CredentialAcquisitionError(
                    f"Parent session {current.parent_session_id} of {current.session_name} no longer exists"
                )
            if parent.session_id in seen:
                raise CredentialAcquisitionError(f"Session chain of {session.session_name} is circular")
            seen.add(parent.session_id)
            current = parent
        return current

    def _validate_patch(self, session: Session, patch: Mapping[str, Any]) -> None:
        super()._validate_patch(session, patch)
        if "parent_session_id" in patch:
            parent_id = patch["parent_session_id"]
            parent = self._workspace.find_session(parent_id) if parent_id else None
            if parent is None or not parent.type.is_aws:
                raise ValidationError(f"Parent session must be an existing AWS session: {parent_id!r}")
            if parent_id == session.session_id or parent_id in {
                t.session_id for t in self.list_truster(session)
            }:
                raise ValidationError("A session cannot be chained from itself or its own trusters")


class AwsSsoRoleHandler(AwsSessionHandler):
    session_types = (SessionType.AWS_SSO_ROLE,)

    def __init__(
        self,
        workspace: WorkspaceState,
        vault_session: VaultSession,
        credentials_file: AwsCredentialsFile,
        portal: SsoPortalClient,
        broker: AWSCredentialBroker | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        super().__init__(workspace, vault_session, credentials_file, broker, retry)
        self._portal = portal

    def _acquire(self, session: Session) -> AWSCredentials:
        sso = cast(AwsSsoRoleSession, session)
        config = self._workspace.get_aws_sso_configuration()
        if not config.region or not config.portal_url:
            raise CredentialAcquisitionError("AWS SSO is not configured")
        if not _still_valid(config.expiration_time):
            raise CredentialAcquisitionError("AWS SSO login has expired, log in again")
        try:
            account_id, role_name = sso.account_number, sso.role_name
        except ValueError as exc:
            raise CredentialAcquisitionError(str(exc)) from exc
        return self._portal.get_role_credentials(self._vault_session, config.region, account_id, role_name)

    def logout(self) -> list[Session]:
        """Stop every SSO session and forget the SSO login expiry."""
        stopped = []
        for session in self._workspace.sessions():
            if session.type is SessionType.AWS_SSO_ROLE and session.status is not SessionStatus.INACTIVE:
                stopped.append(self.stop(session.session_id))
        self._workspace.remove_expiration_time_from_aws_sso_configuration()
        for session in stopped:
            log_session_event(session, "Stopped by AWS SSO logout")
        return stopped


def _ancestor_ids(session: Session, by_id: Mapping[str, Session]) -> set[str]:
    ancestors: set[str] = set()
    current = session
    while isinstance(current, AwsIamRoleChainedSession):
        parent_id = current.parent_session_id
        if parent_id in ancestors or parent_id == session.session_id:
            break
        ancestors.add(parent_id)
        parent = by_id.get(parent_id)
        if parent is None:
            break
        current = parent
    return ancestors


def _still_valid(expiration_time: str | None) -> bool:
    if not expiration_time:
        return False
    try:
        expires = datetime.datetime.fromisoformat(expiration_time)
    except ValueError:
        return False
    if expires.tzinfo is None:
        expires = expires.replace(tzinfo=datetime.UTC)
    return expires > datetime.datetime.now(datetime.UTC)


def check_role_arn(role_arn: str | None) -> None:
    """Raise ``ValidationError`` unless *role_arn* is an IAM role ARN."""
    try:
        split_role_arn(role_arn or "")
    except ValueError as exc:
        raise ValidationError(str(exc)) from None
