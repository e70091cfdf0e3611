"""Durable, encrypted storage of the workspace document.

Pattern: Whole-Document Persistence
------------------------------------
The whole workspace is one JSON document, encrypted with Fernet and written
to a single file under the user's home directory.  Every ``load`` decrypts
and decodes the entire file; every ``save`` re-encodes and re-encrypts the
entire document.

Writes never touch the target file in place.  The ciphertext goes to a
sibling temp file which is fsynced and then atomically renamed over the
target, so a crash mid-write leaves the previous document intact.

Only ``WorkspaceState`` is expected to call ``save``.
"""

from __future__ import annotations

import logging
import os
import pathlib
import tempfile

from cryptography.fernet import Fernet, InvalidToken

from cloud_sessions.models.workspace import Workspace
from cloud_sessions.storage.keys import KeyProvider

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base class for persistence failures."""


class StorageMissing(StorageError):
    """The workspace file does not exist and auto-creation is disabled."""


class StorageCorrupt(StorageError):
    """The workspace file could not be decrypted or decoded."""


class StorageWriteError(StorageError):
    """The workspace file could not be written."""


class EncryptedStore:
    """Reads and writes the encrypted workspace file at *path*."""

    def __init__(
        self,
        path: str | pathlib.Path,
        key_provider: KeyProvider,
        auto_create: bool = True,
    ) -> None:
        self._path = pathlib.Path(path).expanduser()
        self._key_provider = key_provider
        self._auto_create = auto_create

    @property
    def path(self) -> pathlib.Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def create(self) -> bool:
        """Write an empty default workspace if none exists.  Returns True if created."""
        if self.exists():
            return False
        self.save(Workspace())
        logger.info("Created new workspace at %s", self._path)
        return True

    def load(self) -> Workspace:
        """Decrypt and decode the whole document.

        Raises ``StorageMissing`` when the file is absent and auto-creation is
        off, ``StorageCorrupt`` when decryption or decoding fails.
        """
        if not self.exists():
            if not self._auto_create:
                raise StorageMissing(f"Workspace file not found: {self._path}")
            self.create()

        try:
            ciphertext = self._path.read_bytes()
        except OSError as exc:
            raise StorageCorrupt(f"Cannot read workspace file {self._path}: {exc}") from exc

        try:
            plaintext = self._fernet().decrypt(ciphertext)
        except InvalidToken as exc:
            raise StorageCorrupt(f"Cannot decrypt workspace file {self._path}") from exc

        try:
            return Workspace.from_json(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError, KeyError, TypeError) as exc:
            raise StorageCorrupt(f"Cannot decode workspace file {self._path}: {exc}") from exc

    def save(self, workspace: Workspace) -> None:
        """Encrypt and atomically replace the whole document.

        Raises ``StorageWriteError`` on any I/O failure; the previous file is
        left untouched in that case.
        """
        ciphertext = self._fernet().encrypt(workspace.to_json().encode("utf-8"))
        tmp_name: str | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
            )
            with os.fdopen(fd, "wb") as fh:
                fh.write(ciphertext)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self._path)
            tmp_name = None
        except OSError as exc:
            raise StorageWriteError(f"Cannot write workspace file {self._path}: {exc}") from exc
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
        logger.debug("Saved workspace (%d sessions) to %s", len(workspace.sessions), self._path)

    # -- private helpers -----------------------------------------------------

    def _fernet(self) -> Fernet:
        return Fernet(self._key_provider.get_key())
