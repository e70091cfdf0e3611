"""The workspace document: everything the application persists, in one place.

The document is the unit of atomicity.  It is always read and written as a
whole; there are no partial updates.  Keys on disk are camelCase so that the
file stays readable by other tooling that shares the format.
"""

from __future__ import annotations

import dataclasses
import json
import uuid
from typing import Any

from cloud_sessions.models.session import Session, session_from_dict

DEFAULT_PROFILE_NAME = "default"


@dataclasses.dataclass(frozen=True)
class Profile:
    """A named local credential profile that AWS sessions write into."""

    id: str
    name: str


def new_profile(name: str) -> Profile:
    return Profile(id=str(uuid.uuid4()), name=name)


@dataclasses.dataclass(frozen=True)
class IdpUrl:
    id: str
    url: str


@dataclasses.dataclass
class AwsSsoConfiguration:
    """Portal settings for AWS SSO sessions.

    ``expiration_time`` is cleared on logout while the portal settings are
    kept, so a later login does not require reconfiguration.
    """

    region: str | None = None
    portal_url: str | None = None
    expiration_time: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "region": self.region,
            "portalUrl": self.portal_url,
            "expirationTime": self.expiration_time,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> AwsSsoConfiguration:
        data = data or {}
        return cls(
            region=data.get("region"),
            portal_url=data.get("portalUrl"),
            expiration_time=data.get("expirationTime"),
        )


@dataclasses.dataclass
class Workspace:
    """Root of the persisted document.

    Attributes:
        sessions:               Sessions in display / insertion order.
        profiles:               Known credential profiles.
        idp_urls:               Identity provider URLs used by federated sessions.
        aws_sso_configuration:  The single AWS SSO portal configuration.
        default_region:         Region preselected for new AWS sessions.
        default_location:       Location preselected for new Azure sessions.
    """

    sessions: list[Session] = dataclasses.field(default_factory=list)
    profiles: list[Profile] = dataclasses.field(
        default_factory=lambda: [new_profile(DEFAULT_PROFILE_NAME)]
    )
    idp_urls: list[IdpUrl] = dataclasses.field(default_factory=list)
    aws_sso_configuration: AwsSsoConfiguration = dataclasses.field(
        default_factory=AwsSsoConfiguration
    )
    default_region: str = "us-east-1"
    default_location: str = "eastus"

    def to_json(self) -> str:
        return json.dumps({
            "sessions": [s.to_dict() for s in self.sessions],
            "profiles": [{"id": p.id, "name": p.name} for p in self.profiles],
            "idpUrl": [{"id": u.id, "url": u.url} for u in self.idp_urls],
            "awsSsoConfiguration": self.aws_sso_configuration.to_dict(),
            "defaultRegion": self.default_region,
            "defaultLocation": self.default_location,
        })

    @classmethod
    def from_json(cls, raw: str) -> Workspace:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("Workspace document must be a JSON object")

        sessions = [session_from_dict(item) for item in data.get("sessions", [])]
        seen: set[str] = set()
        for session in sessions:
            if session.session_id in seen:
                raise ValueError(f"Duplicate session id in workspace: {session.session_id}")
            seen.add(session.session_id)

        return cls(
            sessions=sessions,
            profiles=[Profile(id=p["id"], name=p["name"]) for p in data.get("profiles", [])],
            idp_urls=[IdpUrl(id=u["id"], url=u["url"]) for u in data.get("idpUrl", [])],
            aws_sso_configuration=AwsSsoConfiguration.from_dict(data.get("awsSsoConfiguration")),
            default_region=data.get("defaultRegion", "us-east-1"),
            default_location=data.get("defaultLocation", "eastus"),
        )
