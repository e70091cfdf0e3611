"""Where the workspace encryption key comes from.

The encrypted store never generates or keeps a key on its own; it asks a
key provider.  In normal operation that is Vault (the same secret holder
that brokers cloud credentials), keyed by the fixed application identifier.
A static provider exists for headless setups and tests.
"""

from __future__ import annotations

import logging
import os
from typing import Protocol

import hvac.exceptions
from cryptography.fernet import Fernet

from cloud_sessions.auth.session import VaultSession
from cloud_sessions.vault.kv_store import VaultKVStore

logger = logging.getLogger(__name__)

KEY_ENV_VAR = "CLOUD_SESSIONS_KEY"
_KEY_SECRET_NAME = "workspace-key"


class KeyProviderError(Exception):
    """Raised when the workspace key cannot be obtained."""


class KeyProvider(Protocol):
    def get_key(self) -> bytes:
        """Return a urlsafe-base64 Fernet key."""
        ...


class StaticKeyProvider:
    """Serves a key supplied up front."""

    def __init__(self, key: bytes | str) -> None:
        self._key = key.encode() if isinstance(key, str) else key

    @classmethod
    def from_env(cls) -> StaticKeyProvider:
        key = os.environ.get(KEY_ENV_VAR)
        if not key:
            raise KeyProviderError(f"{KEY_ENV_VAR} is not set")
        return cls(key)

    def get_key(self) -> bytes:
        return self._key


class VaultKeyProvider:
    """Keeps the Fernet key in Vault KV v2 under ``<app_id>/workspace-key``.

    The key is created on first use.  It is cached for the lifetime of the
    provider so every load/save does not cost a Vault round trip.
    """

    def __init__(self, kv_store: VaultKVStore, session: VaultSession) -> None:
        self._kv = kv_store
        self._session = session
        self._cached: bytes | None = None

    def get_key(self) -> bytes:
        if self._cached is not None:
            return self._cached
        if self._session.is_expired:
            raise KeyProviderError("Vault session has expired, re-authenticate")

        try:
            secret = self._kv.read(self._session, _KEY_SECRET_NAME)
            if secret is None:
                key = Fernet.generate_key()
                self._kv.write(self._session, _KEY_SECRET_NAME, {"key": key.decode()})
                logger.info("Generated new workspace key at %s", self._kv.path_for(_KEY_SECRET_NAME))
            else:
                key = secret["key"].encode()
        except hvac.exceptions.VaultError as exc:
            raise KeyProviderError(f"Cannot read workspace key from Vault: {exc}") from exc

        self._cached = key
        return key
