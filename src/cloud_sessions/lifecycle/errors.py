"""Exceptions raised by the session lifecycle layer."""

from __future__ import annotations


class LifecycleError(Exception):
    """Base class for lifecycle failures surfaced to the user."""


class CredentialAcquisitionError(LifecycleError):
    """The provider refused to issue credentials (denied, expired, misconfigured)."""


class ProviderUnavailable(LifecycleError):
    """The provider could not be reached or asked us to back off.

    This is the only lifecycle error the retry policy retries.
    """


class ValidationError(LifecycleError):
    """A request was rejected before any state was touched."""


class SessionNotFound(LifecycleError, KeyError):
    """No session with the given id exists in the workspace."""

    def __str__(self) -> str:
        return f"Session not found: {self.args[0]}" if self.args else "Session not found"


class UnsupportedSessionType(LifecycleError):
    """No handler is registered for a session's type tag."""
