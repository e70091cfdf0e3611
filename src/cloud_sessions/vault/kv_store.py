"""Application secrets kept in Vault's KV v2 engine.

All secrets this tool owns live below a single path named after the
application identifier (``<app_id>/workspace-key``, ``<app_id>/aws-sso``),
so one Vault policy on ``<kv_mount>/data/<app_id>/*`` covers them.
"""

from __future__ import annotations

import logging
from typing import Any

import hvac
import hvac.exceptions

from cloud_sessions.auth.session import VaultSession

logger = logging.getLogger(__name__)


class VaultKVStore:
    """Reads and writes small secret dictionaries under ``<app_id>/``."""

    def __init__(self, vault_addr: str, app_id: str, kv_mount: str = "secret") -> None:
        self._vault_addr = vault_addr
        self._app_id = app_id
        self._kv_mount = kv_mount

    def path_for(self, name: str) -> str:
        return f"{self._app_id}/{name}"

    def read(self, session: VaultSession, name: str) -> dict[str, Any] | None:
        """Return the latest version of secret *name*, or ``None`` if absent.

        Other Vault errors propagate as ``hvac.exceptions.VaultError``.
        """
        client = hvac.Client(url=self._vault_addr, token=session.vault_token)
        try:
            response = client.secrets.kv.v2.read_secret_version(
                path=self.path_for(name),
                mount_point=self._kv_mount,
                raise_on_deleted_version=True,
            )
        except hvac.exceptions.InvalidPath:
            return None
        return response["data"]["data"]

    def write(self, session: VaultSession, name: str, secret: dict[str, Any]) -> None:
        client = hvac.Client(url=self._vault_addr, token=session.vault_token)
        client.secrets.kv.v2.create_or_update_secret(
            path=self.path_for(name),
            secret=secret,
            mount_point=self._kv_mount,
        )
        logger.info("Wrote Vault secret %s/%s", self._kv_mount, self.path_for(name))
