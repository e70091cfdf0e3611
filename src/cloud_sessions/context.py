"""Startup wiring shared by the CLI and the MCP server.

Pattern: Factory
-----------------
Building a usable registry is a fixed sequence:

  1. Pick the key provider (``CLOUD_SESSIONS_KEY`` or Vault KV).
  2. Open the encrypted store and the workspace state on top of it.
  3. Register one handler per session type.

Callers only need settings and an authenticated ``VaultSession``.
"""

from __future__ import annotations

import dataclasses
import logging
import os

from cloud_sessions.auth.session import VaultSession
from cloud_sessions.lifecycle.registry import SessionRegistry, build_registry
from cloud_sessions.settings import Settings
from cloud_sessions.storage.encrypted_store import EncryptedStore
from cloud_sessions.storage.keys import KEY_ENV_VAR, KeyProvider, StaticKeyProvider, VaultKeyProvider
from cloud_sessions.vault.kv_store import VaultKVStore
from cloud_sessions.workspace.state import WorkspaceState

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class AppContext:
    settings: Settings
    vault_session: VaultSession
    workspace: WorkspaceState
    registry: SessionRegistry


def build_key_provider(settings: Settings, vault_session: VaultSession) -> KeyProvider:
    if os.environ.get(KEY_ENV_VAR):
        logger.info("Using workspace key from %s", KEY_ENV_VAR)
        return StaticKeyProvider.from_env()
    kv_store = VaultKVStore(settings.vault_addr, app_id=settings.app_id, kv_mount=settings.kv_mount)
    return VaultKeyProvider(kv_store, vault_session)


def build_context(settings: Settings, vault_session: VaultSession) -> AppContext:
    store = EncryptedStore(settings.workspace_path, build_key_provider(settings, vault_session))
    workspace = WorkspaceState(store, default_profile_name=settings.default_profile_name)
    registry = build_registry(settings, workspace, vault_session)
    logger.info(
        "Workspace %s opened with %d session(s)",
        settings.workspace_path,
        len(workspace.sessions()),
    )
    return AppContext(
        settings=settings,
        vault_session=vault_session,
        workspace=workspace,
        registry=registry,
    )
