"""Multi-step operations composed from handler calls.

Changing the region or profile of an *active* session cannot be a plain
update: the credentials already written out are bound to the old values.
The switch is therefore stop -> update -> start, and the update is committed
even if the restart fails.  A ``SwitchResult`` reports the two outcomes
separately so a restart failure never hides a change that did happen.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import threading
from typing import Any, Iterable, Mapping

from cloud_sessions.audit import log_session_event
from cloud_sessions.lifecycle.aws import AwsSessionHandler
from cloud_sessions.lifecycle.errors import ValidationError
from cloud_sessions.lifecycle.registry import SessionRegistry
from cloud_sessions.models.session import Session, SessionStatus
from cloud_sessions.models.workspace import Profile

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class SwitchResult:
    """Outcome of a region/profile switch.

    Attributes:
        session:       The session as persisted after the switch.
        restarted:     True if the session was active and was started again.
        restart_error: The error raised by the restart, if it failed.  The
                       field change itself is committed regardless, whether
                       the restart failed in Vault or on the local
                       credentials file.
    """

    session: Session
    restarted: bool = False
    restart_error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.restart_error is None


@dataclasses.dataclass(frozen=True)
class DeleteConfirmation:
    """What a delete would remove, for the user to confirm first."""

    session: Session
    dependents: tuple[str, ...]

    @property
    def message(self) -> str:
        if not self.dependents:
            return "Do you really want to delete this session?"
        names = "\n".join(f"  - {name}" for name in self.dependents)
        return (
            "This session has truster sessions:\n"
            f"{names}\n"
            "Removing the session will also remove the truster sessions associated with it. "
            "Do you want to proceed?"
        )


def change_region(
    registry: SessionRegistry,
    session_id: str,
    region: str | None,
    allowed: Iterable[str] | None = None,
) -> SwitchResult:
    """Set the default region (AWS) or location (Azure) of a session."""
    if not region:
        raise ValidationError("Select a region first")
    if allowed is not None and region not in set(allowed):
        raise ValidationError(f"Unknown region or location: {region}")
    return _switch(registry, session_id, {"region": region}, "Default region changed")


def change_profile(
    registry: SessionRegistry,
    session_id: str,
    profile: Profile | None,
) -> SwitchResult:
    """Bind an AWS session to *profile*, registering the profile if it is new."""
    if profile is None or not profile.name:
        raise ValidationError("Select a profile first")
    session = registry.workspace.get_session(session_id)
    if not session.type.is_aws:
        raise ValidationError("Azure sessions have no credential profile")

    workspace = registry.workspace
    if not workspace.has_profile(profile.id):
        workspace.add_profile(profile)
    return _switch(registry, session_id, {"profile_id": profile.id}, "Profile changed")


def switch_credentials(registry: SessionRegistry, session_id: str) -> Session:
    """Stop an active session, start any other."""
    handler = registry.handler_for_session(session_id)
    session = registry.workspace.get_session(session_id)
    if session.status is SessionStatus.ACTIVE:
        return handler.stop(session_id)
    return handler.start(session_id)


def plan_delete(registry: SessionRegistry, session_id: str) -> DeleteConfirmation:
    session = registry.workspace.get_session(session_id)
    handler = registry.handler_for(session.type)
    dependents: tuple[str, ...] = ()
    if isinstance(handler, AwsSessionHandler):
        dependents = tuple(s.session_name for s in handler.list_truster(session))
    return DeleteConfirmation(session=session, dependents=dependents)


def delete_session(registry: SessionRegistry, session_id: str, cascade: bool = True) -> list[Session]:
    return registry.handler_for_session(session_id).delete(session_id, cascade=cascade)


async def start_session_async(registry: SessionRegistry, session_id: str) -> Session:
    """Run ``start`` on a worker thread without blocking the event loop.

    If the awaiting task is cancelled, the worker is told to discard its
    result and the session is reconciled to ``inactive`` straight away.
    """
    handler = registry.handler_for_session(session_id)
    cancel_event = threading.Event()
    worker = asyncio.ensure_future(asyncio.to_thread(handler.start, session_id, cancel_event))
    try:
        return await asyncio.shield(worker)
    except asyncio.CancelledError:
        cancel_start(registry, session_id, cancel_event)
        worker.add_done_callback(_log_abandoned_start)
        raise


def cancel_start(registry: SessionRegistry, session_id: str, cancel_event: threading.Event) -> None:
    """Tell an in-flight ``start`` to back out and reset a pending session.

    The event is set under the workspace lock, which ``start`` also holds
    while it checks the event and commits ``active``.
    """
    workspace = registry.workspace
    with workspace.exclusive():
        cancel_event.set()
        session = workspace.find_session(session_id)
        if session is None or session.status is not SessionStatus.PENDING:
            return
        workspace.set_status(session_id, SessionStatus.INACTIVE)
    logger.info("Start of %s cancelled, session reset to inactive", session.session_name)


# -- private helpers ---------------------------------------------------------

def _switch(
    registry: SessionRegistry,
    session_id: str,
    patch: Mapping[str, Any],
    message: str,
) -> SwitchResult:
    handler = registry.handler_for_session(session_id)
    session = registry.workspace.get_session(session_id)
    handler.validate_update(session, patch)

    was_active = session.status is SessionStatus.ACTIVE
    if was_active:
        handler.stop(session_id)

    updated = handler.update(session_id, patch)
    log_session_event(updated, message)
    if not was_active:
        return SwitchResult(session=updated)

    try:
        restarted = handler.start(session_id)
    except Exception as exc:
        logger.warning("%s committed for %s but restart failed: %r", message, session.session_name, exc)
        return SwitchResult(
            session=registry.workspace.get_session(session_id),
            restarted=False,
            restart_error=exc,
        )
    return SwitchResult(session=restarted, restarted=True)


def _log_abandoned_start(future: asyncio.Future[Session]) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.warning("Cancelled start finished with an error: %s", exc)
