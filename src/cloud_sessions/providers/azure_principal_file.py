"""Service principal entries read by the Azure CLI.

The Azure CLI keeps service principal secrets in
``~/.azure/service_principal_entries.json`` as a list of
``{"client_id", "tenant", "client_secret"}`` objects.  Active Azure sessions
add their brokered principal there; stopping removes it.
"""

from __future__ import annotations

import json
import logging
import os
import pathlib
import tempfile
import threading
from typing import Any

logger = logging.getLogger(__name__)

SESSION_TAG = "cloud_sessions_session_id"


class AzureServicePrincipalFile:
    def __init__(self, path: str | pathlib.Path = "~/.azure/service_principal_entries.json") -> None:
        self._path = pathlib.Path(path).expanduser()
        self._lock = threading.Lock()

    @property
    def path(self) -> pathlib.Path:
        return self._path

    def entries(self) -> list[dict[str, Any]]:
        if not self._path.exists():
            return []
        text = self._path.read_text(encoding="utf-8").strip()
        return json.loads(text) if text else []

    def upsert(
        self,
        client_id: str,
        tenant: str,
        client_secret: str,
        session_id: str | None = None,
    ) -> None:
        """Add or replace the entry for *client_id*.

        *session_id* tags the entry so a later process can remove it without
        knowing which principal Vault issued.
        """
        entry = {"client_id": client_id, "tenant": tenant, "client_secret": client_secret}
        if session_id:
            entry[SESSION_TAG] = session_id
        with self._lock:
            entries = [e for e in self.entries() if e.get("client_id") != client_id]
            entries.append(entry)
            self._write(entries)
        logger.debug("Recorded Azure service principal %s in %s", client_id, self._path)

    def remove(self, client_id: str) -> bool:
        with self._lock:
            entries = self.entries()
            remaining = [e for e in entries if e.get("client_id") != client_id]
            if len(remaining) == len(entries):
                return False
            self._write(remaining)
        logger.debug("Removed Azure service principal %s from %s", client_id, self._path)
        return True

    def remove_for_session(self, session_id: str) -> list[str]:
        """Remove every entry tagged with *session_id*; return their client ids."""
        with self._lock:
            entries = self.entries()
            removed = [e["client_id"] for e in entries if e.get(SESSION_TAG) == session_id]
            if removed:
                self._write([e for e in entries if e.get(SESSION_TAG) != session_id])
        if removed:
            logger.debug("Removed Azure service principal(s) %s from %s", removed, self._path)
        return removed

    def _write(self, entries: list[dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".sp_entries.", dir=self._path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(entries, fh, indent=2)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self._path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
