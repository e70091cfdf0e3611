"""Provider-independent session lifecycle.

Pattern: Template Method over a Persisted State Machine
--------------------------------------------------------
Every session moves through the same states::

    inactive --start--> pending --success--> active
    active   --stop---> inactive
    pending  --failure-> (previous status)

``SessionHandler`` owns those transitions and their persistence; a concrete
handler only supplies how credentials are obtained and applied locally
(``_activate``) and how they are withdrawn (``_deactivate``).  Provider calls
are wrapped in the handler's ``RetryPolicy`` so transient failures back off
and retry before the error reaches the user.

Handlers are registered in a ``SessionRegistry``, which attaches itself so a
handler can reach the handler of a *different* session type (for example
when deleting the truster sessions of an AWS session).
"""

from __future__ import annotations

import abc
import datetime
import logging
import threading
from typing import TYPE_CHECKING, Any, ClassVar, Mapping

from cloud_sessions.audit import log_session_event
from cloud_sessions.lifecycle.errors import UnsupportedSessionType, ValidationError
from cloud_sessions.lifecycle.retry import RetryPolicy
from cloud_sessions.models.session import (
    PROTECTED_FIELDS,
    Session,
    SessionStatus,
    SessionType,
    patchable_fields,
)
from cloud_sessions.workspace.state import WorkspaceState

if TYPE_CHECKING:
    from cloud_sessions.lifecycle.registry import SessionRegistry

logger = logging.getLogger(__name__)


class SessionHandler(abc.ABC):
    """Start/stop/update/delete for the session types in ``session_types``."""

    session_types: ClassVar[tuple[SessionType, ...]] = ()

    def __init__(self, workspace: WorkspaceState, retry: RetryPolicy | None = None) -> None:
        self._workspace = workspace
        self._retry = retry or RetryPolicy()
        self._registry: SessionRegistry | None = None

    def attach(self, registry: SessionRegistry) -> None:
        self._registry = registry

    # -- lifecycle operations -------------------------------------------------

    def start(self, session_id: str, cancel_event: threading.Event | None = None) -> Session:
        """Acquire (or refresh) credentials and mark the session active.

        On failure the session goes back to the status it had before and the
        error propagates.  If *cancel_event* is set before the session is
        committed active, the applied credentials are withdrawn again and the
        session is left inactive.
        """
        session = self._get(session_id)
        previous = session.status
        self._before_start(session)

        pending = self._workspace.set_status(session_id, SessionStatus.PENDING)
        log_session_event(pending, "Starting session")
        try:
            self._retry.call(lambda: self._activate(pending), f"start {pending.session_name}")
        except BaseException:
            self._workspace.set_status(session_id, previous)
            raise

        with self._workspace.exclusive():
            if cancel_event is None or not cancel_event.is_set():
                active = self._workspace.set_status(
                    session_id,
                    SessionStatus.ACTIVE,
                    start_time=datetime.datetime.now(datetime.UTC).isoformat(),
                )
                log_session_event(active, "Session started")
                return active

        self._deactivate(pending)
        cancelled = self._workspace.set_status(session_id, SessionStatus.INACTIVE, start_time=None)
        log_session_event(cancelled, "Start cancelled")
        return cancelled

    def stop(self, session_id: str) -> Session:
        """Withdraw credentials and mark the session inactive.

        Stopping an inactive session does nothing and publishes nothing.
        """
        session = self._get(session_id)
        if session.status is SessionStatus.INACTIVE:
            return session

        self._deactivate(session)
        stopped = self._workspace.set_status(session_id, SessionStatus.INACTIVE, start_time=None)
        log_session_event(stopped, "Session stopped")
        return stopped

    def update(self, session_id: str, patch: Mapping[str, Any]) -> Session:
        """Persist field changes on a session.

        The patch is validated in full before anything is written.  Restarting
        an active session so that new credentials reflect the change is the
        caller's job (see ``lifecycle.switch``).
        """
        session = self._get(session_id)
        self.validate_update(session, patch)
        updated = self._workspace.update_session(session_id, **patch)
        log_session_event(updated, f"Session updated: {sorted(patch)}")
        return updated

    def validate_update(self, session: Session, patch: Mapping[str, Any]) -> None:
        """Raise ``ValidationError`` if *patch* cannot be applied to *session*."""
        if not patch:
            raise ValidationError("Nothing to update")
        protected = PROTECTED_FIELDS.intersection(patch)
        if protected:
            raise ValidationError(f"Fields cannot be changed through update: {sorted(protected)}")
        unknown = set(patch) - patchable_fields(session)
        if unknown:
            raise ValidationError(
                f"Fields not valid for a {session.type.value} session: {sorted(unknown)}"
            )
        self._validate_patch(session, patch)

    def delete(self, session_id: str, cascade: bool = True) -> list[Session]:
        """Stop and remove the session.  Returns every session removed."""
        session = self._get(session_id)
        self.stop(session_id)
        self._workspace.remove_session(session_id)
        log_session_event(session, "Session deleted")
        return [session]

    # -- hooks for concrete handlers -----------------------------------------

    @abc.abstractmethod
    def _activate(self, session: Session) -> None:
        """Obtain credentials for *session* and make them usable locally."""

    @abc.abstractmethod
    def _deactivate(self, session: Session) -> None:
        """Withdraw whatever ``_activate`` put in place.  Must tolerate nothing to do."""

    def _before_start(self, session: Session) -> None:
        """Called before the session is marked pending."""

    def _validate_patch(self, session: Session, patch: Mapping[str, Any]) -> None:
        """Type-specific patch checks; raise ``ValidationError`` to reject."""
        if "session_name" in patch and not patch["session_name"]:
            raise ValidationError("Session name cannot be empty")

    # -- helpers -------------------------------------------------------------

    def _get(self, session_id: str) -> Session:
        session = self._workspace.get_session(session_id)
        if session.type not in self.session_types:
            raise UnsupportedSessionType(
                f"{type(self).__name__} cannot handle {session.type.value} session {session_id}"
            )
        return session

    def _handler_for(self, session: Session) -> SessionHandler:
        if session.type in self.session_types:
            return self
        if self._registry is None:
            raise UnsupportedSessionType(f"No handler attached for {session.type.value}")
        return self._registry.handler_for(session.type)
