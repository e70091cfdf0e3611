"""Session records managed by the workspace.

Pattern: Tagged Variants
-------------------------
Every session shares an identity (``session_id``), a display name, a status
and an optional region.  Provider-specific fields live only on the variant
that needs them, so an Azure session simply has no ``profile_id`` and an IAM
user has no ``role_arn``.  The ``type`` tag is a class attribute that is
written to disk and used to pick the right variant when reading it back, and
to pick the right lifecycle handler at runtime.

Sessions are immutable snapshots.  Status changes and field edits produce a
new object via ``dataclasses.replace`` which is then persisted by the
workspace; subscribers can never observe a half-edited record.
"""

from __future__ import annotations

import dataclasses
import enum
from typing import Any, ClassVar


class SessionStatus(str, enum.Enum):
    INACTIVE = "inactive"
    PENDING = "pending"
    ACTIVE = "active"


class SessionType(str, enum.Enum):
    AWS_IAM_USER = "awsIamUser"
    AWS_IAM_ROLE_FEDERATED = "awsIamRoleFederated"
    AWS_IAM_ROLE_CHAINED = "awsIamRoleChained"
    AWS_SSO_ROLE = "awsSsoRole"
    AZURE = "azure"

    @property
    def is_aws(self) -> bool:
        return self is not SessionType.AZURE


# Python attribute name -> on-disk key, for every field any variant declares.
_FIELD_KEYS: dict[str, str] = {
    "session_id": "sessionId",
    "session_name": "sessionName",
    "status": "status",
    "region": "region",
    "start_time": "startDateTime",
    "profile_id": "profileId",
    "vault_role": "vaultRole",
    "role_arn": "roleArn",
    "idp_url_id": "idpUrlId",
    "parent_session_id": "parentSessionId",
    "role_session_name": "roleSessionName",
    "tenant_id": "tenantId",
    "subscription_id": "subscriptionId",
}

# Fields that identify a session or are owned by the lifecycle, never patchable.
PROTECTED_FIELDS = frozenset({"session_id", "status", "start_time"})


@dataclasses.dataclass(frozen=True)
class Session:
    """Common part of every session variant.

    Attributes:
        session_id:   Unique, immutable identifier.
        session_name: Human-facing label (account or subscription name).
        status:       Lifecycle status.
        region:       Default AWS region or Azure location, ``None`` until set.
        start_time:   ISO-8601 UTC timestamp of the last successful start.
    """

    type: ClassVar[SessionType]

    session_id: str
    session_name: str
    status: SessionStatus = SessionStatus.INACTIVE
    region: str | None = None
    start_time: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type.value}
        for field in dataclasses.fields(self):
            value = getattr(self, field.name)
            if isinstance(value, enum.Enum):
                value = value.value
            data[_FIELD_KEYS[field.name]] = value
        return data

    def __str__(self) -> str:
        return f"{self.type.value}:{self.session_name} ({self.session_id}, {self.status.value})"


def split_role_arn(role_arn: str) -> tuple[str, str]:
    """Return ``(account_number, role_name)`` from an IAM role ARN.

    ``arn:aws:iam::123456789012:role/path/Name`` -> ``("123456789012", "Name")``.
    """
    parts = role_arn.split(":", 5)
    if len(parts) != 6 or parts[0] != "arn" or parts[2] != "iam" or not parts[5].startswith("role/"):
        raise ValueError(f"Not an IAM role ARN: {role_arn!r}")
    return parts[4], parts[5].rsplit("/", 1)[-1]


class _RoleArnMixin:
    role_arn: str

    @property
    def account_number(self) -> str:
        return split_role_arn(self.role_arn)[0]

    @property
    def role_name(self) -> str:
        return split_role_arn(self.role_arn)[1]


@dataclasses.dataclass(frozen=True)
class AwsIamUserSession(Session):
    type: ClassVar[SessionType] = SessionType.AWS_IAM_USER

    profile_id: str | None = None
    vault_role: str = ""


@dataclasses.dataclass(frozen=True)
class AwsIamRoleFederatedSession(_RoleArnMixin, Session):
    type: ClassVar[SessionType] = SessionType.AWS_IAM_ROLE_FEDERATED

    profile_id: str | None = None
    role_arn: str = ""
    idp_url_id: str | None = None
    vault_role: str = ""


@dataclasses.dataclass(frozen=True)
class AwsIamRoleChainedSession(_RoleArnMixin, Session):
    """A session whose credentials are obtained through another session."""

    type: ClassVar[SessionType] = SessionType.AWS_IAM_ROLE_CHAINED

    profile_id: str | None = None
    role_arn: str = ""
    parent_session_id: str = ""
    role_session_name: str | None = None


@dataclasses.dataclass(frozen=True)
class AwsSsoRoleSession(_RoleArnMixin, Session):
    type: ClassVar[SessionType] = SessionType.AWS_SSO_ROLE

    profile_id: str | None = None
    role_arn: str = ""


@dataclasses.dataclass(frozen=True)
class AzureSession(Session):
    type: ClassVar[SessionType] = SessionType.AZURE

    tenant_id: str = ""
    subscription_id: str = ""
    vault_role: str = ""


SESSION_CLASSES: dict[SessionType, type[Session]] = {
    cls.type: cls
    for cls in (
        AwsIamUserSession,
        AwsIamRoleFederatedSession,
        AwsIamRoleChainedSession,
        AwsSsoRoleSession,
        AzureSession,
    )
}

_KEY_FIELDS = {key: name for name, key in _FIELD_KEYS.items()}


def session_from_dict(data: dict[str, Any]) -> Session:
    """Rebuild the right session variant from its on-disk form.

    Raises ``ValueError`` for an unknown type tag or a missing identity.
    """
    try:
        session_type = SessionType(data["type"])
    except (KeyError, ValueError) as exc:
        raise ValueError(f"Unknown session type: {data.get('type')!r}") from exc

    cls = SESSION_CLASSES[session_type]
    allowed = {field.name for field in dataclasses.fields(cls)}
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        name = _KEY_FIELDS.get(key)
        if name is not None and name in allowed and value is not None:
            kwargs[name] = value

    if "session_id" not in kwargs:
        raise ValueError("Session record has no sessionId")
    kwargs.setdefault("session_name", kwargs["session_id"])
    if "status" in kwargs:
        kwargs["status"] = SessionStatus(kwargs["status"])
    return cls(**kwargs)


def patchable_fields(session: Session) -> frozenset[str]:
    """Field names a caller may change through ``update``."""
    return frozenset(f.name for f in dataclasses.fields(session)) - PROTECTED_FIELDS


def profile_id_of(session: Session) -> str | None:
    """Return the profile id of an AWS session, ``None`` for Azure."""
    if not session.type.is_aws:
        return None
    return getattr(session, "profile_id", None)
