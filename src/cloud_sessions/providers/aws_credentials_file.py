"""The shared AWS credentials file (``~/.aws/credentials``).

An active AWS session writes its temporary keys under the name of the
session's profile so that every AWS tool on the machine picks them up.
Stopping the session removes that section again.  Sections this tool did
not write are preserved.
"""

from __future__ import annotations

import configparser
import logging
import os
import pathlib
import tempfile
import threading

from cloud_sessions.vault.aws_credentials import AWSCredentials

logger = logging.getLogger(__name__)


class AwsCredentialsFile:
    def __init__(self, path: str | pathlib.Path = "~/.aws/credentials") -> None:
        self._path = pathlib.Path(path).expanduser()
        self._lock = threading.Lock()

    @property
    def path(self) -> pathlib.Path:
        return self._path

    def profiles(self) -> list[str]:
        return self._read().sections()

    def read_profile(self, name: str) -> dict[str, str] | None:
        parser = self._read()
        if not parser.has_section(name):
            return None
        return dict(parser.items(name))

    def write_profile(self, name: str, credentials: AWSCredentials, region: str | None = None) -> None:
        with self._lock:
            parser = self._read()
            if parser.has_section(name):
                parser.remove_section(name)
            parser.add_section(name)
            parser.set(name, "aws_access_key_id", credentials.access_key_id)
            parser.set(name, "aws_secret_access_key", credentials.secret_access_key)
            if credentials.session_token:
                parser.set(name, "aws_session_token", credentials.session_token)
            if region:
                parser.set(name, "region", region)
            self._write(parser)
        logger.debug("Wrote AWS profile [%s] to %s", name, self._path)

    def remove_profile(self, name: str) -> bool:
        """Remove section *name*.  Returns False if it was not there."""
        with self._lock:
            parser = self._read()
            if not parser.remove_section(name):
                return False
            self._write(parser)
        logger.debug("Removed AWS profile [%s] from %s", name, self._path)
        return True

    # -- private helpers -----------------------------------------------------

    def _read(self) -> configparser.ConfigParser:
        parser = configparser.ConfigParser(interpolation=None)
        if self._path.exists():
            parser.read(self._path, encoding="utf-8")
        return parser

    def _write(self, parser: configparser.ConfigParser) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".credentials.", dir=self._path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                parser.write(fh)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self._path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
