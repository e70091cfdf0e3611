"""Authenticated Vault identity used for every credential request.

Pattern: Session Context Propagation
-------------------------------------
A single ``VaultSession`` is created when the user authenticates against
Vault (or supplies a pre-issued token) and is threaded through the key
provider, the credential brokers, and the lifecycle handlers.  A component
that does not receive a ``VaultSession`` cannot ask Vault for anything.

It is intentionally immutable.  Re-authentication produces a new object.
"""

from __future__ import annotations

import dataclasses
import datetime


@dataclasses.dataclass(frozen=True)
class VaultSession:
    """Immutable snapshot of an authenticated Vault login.

    Attributes:
        user_id:        Username or entity ID from Vault's auth response.
        vault_token:    Vault client token for this login.
        token_policies: Set of Vault policy names attached to the token.
        created_at:     UTC timestamp of login.
        ttl_seconds:    Remaining TTL of the token at login time; ``0`` means
                        the token does not expire (root or periodic tokens).
    """

    user_id: str
    vault_token: str
    token_policies: frozenset[str]
    created_at: datetime.datetime
    ttl_seconds: int

    @classmethod
    def from_token(cls, token: str, ttl_seconds: int = 0, user_id: str = "token") -> VaultSession:
        """Wrap a pre-issued token, e.g. from ``VAULT_TOKEN``."""
        return cls(
            user_id=user_id,
            vault_token=token,
            token_policies=frozenset(),
            created_at=datetime.datetime.now(datetime.UTC),
            ttl_seconds=ttl_seconds,
        )

    @property
    def is_expired(self) -> bool:
        if self.ttl_seconds <= 0:
            return False
        elapsed = (datetime.datetime.now(datetime.UTC) - self.created_at).total_seconds()
        return elapsed >= self.ttl_seconds

    def __str__(self) -> str:
        return f"VaultSession(user={self.user_id}, expired={self.is_expired})"
