"""In-process source of truth for the session list.

Pattern: Persist-then-Publish
------------------------------
``WorkspaceState`` owns the in-memory mirror of the workspace's sessions and
is the only component that writes through the ``EncryptedStore``.  Every
mutation is a read-modify-persist transaction:

  1. load the whole document from the store,
  2. apply the change to the loaded copy,
  3. save the whole document,
  4. replace the in-memory list and publish it to subscribers.

Steps 1-4 run under a single re-entrant lock, so two callers can never
interleave their loads and saves and silently drop each other's changes.
If step 3 fails, step 4 never happens: observers only ever see state that
is already durable.

Subscribers receive the full session list on every change, not deltas.
"""

from __future__ import annotations

import contextlib
import dataclasses
import itertools
import logging
import threading
from typing import Callable, Iterator, Sequence

from cloud_sessions.lifecycle.errors import SessionNotFound
from cloud_sessions.models.session import Session, SessionStatus
from cloud_sessions.models.workspace import (
    DEFAULT_PROFILE_NAME,
    AwsSsoConfiguration,
    IdpUrl,
    Profile,
    Workspace,
)
from cloud_sessions.storage.encrypted_store import EncryptedStore

logger = logging.getLogger(__name__)

SessionsListener = Callable[[Sequence[Session]], None]


class Subscription:
    """Handle returned by ``WorkspaceState.subscribe``."""

    def __init__(self, state: WorkspaceState, token: int) -> None:
        self._state = state
        self._token = token
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if self._active:
            self._state._remove_subscriber(self._token)
            self._active = False


class WorkspaceState:
    """Observable, persisted workspace.

    Construct one per process and pass it to whatever needs it.
    """

    def __init__(
        self,
        store: EncryptedStore,
        default_profile_name: str = DEFAULT_PROFILE_NAME,
    ) -> None:
        self._store = store
        self._default_profile_name = default_profile_name
        self._lock = threading.RLock()
        self._subscribers: dict[int, SessionsListener] = {}
        self._tokens = itertools.count()

        self._store.create()
        self._sessions: tuple[Session, ...] = tuple(self._reconcile_pending())

    # -- session list -------------------------------------------------------

    def sessions(self) -> list[Session]:
        """Snapshot of the current session list, in display order."""
        return list(self._sessions)

    def get_session(self, session_id: str) -> Session:
        for session in self._sessions:
            if session.session_id == session_id:
                return session
        raise SessionNotFound(session_id)

    def find_session(self, session_id: str) -> Session | None:
        try:
            return self.get_session(session_id)
        except SessionNotFound:
            return None

    def subscribe(self, listener: SessionsListener, replay: bool = False) -> Subscription:
        """Register *listener* for every future session list.

        With *replay* the current list is delivered immediately as well.
        """
        with self._lock:
            token = next(self._tokens)
            self._subscribers[token] = listener
            if replay:
                self._deliver(listener, tuple(self._sessions))
        return Subscription(self, token)

    def set_sessions(self, sessions: Sequence[Session]) -> None:
        sessions = list(sessions)
        ids = [s.session_id for s in sessions]
        if len(ids) != len(set(ids)):
            raise ValueError("Session ids must be unique")
        with self.transaction() as workspace:
            workspace.sessions = sessions

    def add_session(self, session: Session) -> None:
        with self.transaction() as workspace:
            if any(s.session_id == session.session_id for s in workspace.sessions):
                raise ValueError(f"Session id already exists: {session.session_id}")
            workspace.sessions = [*workspace.sessions, session]

    def remove_session(self, session_id: str) -> None:
        with self.transaction() as workspace:
            workspace.sessions = [s for s in workspace.sessions if s.session_id != session_id]

    def replace_session(self, session: Session) -> Session:
        """Swap the stored record with the same id for *session*, keeping its position."""
        with self.transaction() as workspace:
            for index, existing in enumerate(workspace.sessions):
                if existing.session_id == session.session_id:
                    workspace.sessions[index] = session
                    break
            else:
                raise SessionNotFound(session.session_id)
        return session

    def update_session(self, session_id: str, **changes: object) -> Session:
        """Apply *changes* to the freshly loaded record and persist it."""
        with self.transaction() as workspace:
            for index, existing in enumerate(workspace.sessions):
                if existing.session_id == session_id:
                    updated = dataclasses.replace(existing, **changes)
                    workspace.sessions[index] = updated
                    break
            else:
                raise SessionNotFound(session_id)
        return updated

    def set_status(self, session_id: str, status: SessionStatus, **changes: object) -> Session:
        """Persist a status transition (plus any lifecycle-owned fields)."""
        return self.update_session(session_id, status=status, **changes)

    # -- profiles -----------------------------------------------------------

    def profiles(self) -> list[Profile]:
        return list(self._store.load().profiles)

    def get_profile_name(self, profile_id: str | None) -> str:
        """Name of *profile_id*, or the default profile name when unknown."""
        for profile in self._store.load().profiles:
            if profile.id == profile_id:
                return profile.name
        return self._default_profile_name

    def has_profile(self, profile_id: str) -> bool:
        return any(p.id == profile_id for p in self._store.load().profiles)

    def get_default_profile_id(self) -> str | None:
        for profile in self._store.load().profiles:
            if profile.name == self._default_profile_name:
                return profile.id
        return None

    def add_profile(self, profile: Profile) -> None:
        with self.transaction() as workspace:
            if any(p.id == profile.id for p in workspace.profiles):
                raise ValueError(f"Profile id already exists: {profile.id}")
            workspace.profiles.append(profile)

    def remove_profile(self, profile_id: str) -> None:
        with self.transaction() as workspace:
            workspace.profiles = [p for p in workspace.profiles if p.id != profile_id]

    # -- identity provider URLs --------------------------------------------

    def get_idp_url(self, idp_url_id: str) -> str | None:
        for idp_url in self._store.load().idp_urls:
            if idp_url.id == idp_url_id:
                return idp_url.url
        return None

    def add_idp_url(self, idp_url: IdpUrl) -> None:
        with self.transaction() as workspace:
            workspace.idp_urls.append(idp_url)

    # -- AWS SSO configuration ----------------------------------------------

    def configure_aws_sso(self, region: str, portal_url: str, expiration_time: str | None) -> None:
        with self.transaction() as workspace:
            workspace.aws_sso_configuration = AwsSsoConfiguration(
                region=region,
                portal_url=portal_url,
                expiration_time=expiration_time,
            )

    def remove_expiration_time_from_aws_sso_configuration(self) -> None:
        with self.transaction() as workspace:
            workspace.aws_sso_configuration.expiration_time = None

    def get_aws_sso_configuration(self) -> AwsSsoConfiguration:
        return self._store.load().aws_sso_configuration

    # -- transactions --------------------------------------------------------

    @contextlib.contextmanager
    def transaction(self) -> Iterator[Workspace]:
        """Load the document, yield it for mutation, then persist and publish.

        Nothing is saved if the body raises.  Subscribers are notified only
        when the session list actually changed.
        """
        with self._lock:
            workspace = self._store.load()
            before = tuple(workspace.sessions)
            yield workspace
            self._store.save(workspace)
            after = tuple(workspace.sessions)
            if after != before or after != self._sessions:
                self._sessions = after
                self._publish(after)

    @contextlib.contextmanager
    def exclusive(self) -> Iterator[None]:
        """Hold the writer lock across several reads and transactions."""
        with self._lock:
            yield

    # -- private helpers -----------------------------------------------------

    def _reconcile_pending(self) -> list[Session]:
        """Rewrite sessions left ``pending`` by a previous process as ``inactive``."""
        with self._lock:
            workspace = self._store.load()
            stale = [s for s in workspace.sessions if s.status is SessionStatus.PENDING]
            if stale:
                workspace.sessions = [
                    dataclasses.replace(s, status=SessionStatus.INACTIVE)
                    if s.status is SessionStatus.PENDING else s
                    for s in workspace.sessions
                ]
                self._store.save(workspace)
                logger.warning(
                    "Reset %d session(s) left pending to inactive: %s",
                    len(stale),
                    [s.session_id for s in stale],
                )
            return workspace.sessions

    def _publish(self, sessions: tuple[Session, ...]) -> None:
        for listener in list(self._subscribers.values()):
            self._deliver(listener, sessions)

    @staticmethod
    def _deliver(listener: SessionsListener, sessions: tuple[Session, ...]) -> None:
        try:
            listener(list(sessions))
        except Exception:
            logger.exception("Session list subscriber %r failed", listener)

    def _remove_subscriber(self, token: int) -> None:
        with self._lock:
            self._subscribers.pop(token, None)
