"""Translation of Vault client failures into lifecycle errors.

Rate limiting, server-side failures, a sealed Vault and transport errors are
transient: they become ``ProviderUnavailable`` and are retried with backoff.
Anything else (permission denied, bad role, invalid path) is a
``CredentialAcquisitionError`` and is surfaced immediately.
"""

from __future__ import annotations

import hvac.exceptions
import requests

from cloud_sessions.lifecycle.errors import (
    CredentialAcquisitionError,
    LifecycleError,
    ProviderUnavailable,
)

_TRANSIENT_VAULT_ERRORS = (
    hvac.exceptions.RateLimitExceeded,
    hvac.exceptions.InternalServerError,
    hvac.exceptions.BadGateway,
    hvac.exceptions.VaultDown,
)


def translate_vault_error(exc: Exception, context: str) -> LifecycleError:
    """Return the lifecycle error to raise (``from exc``) for a Vault failure."""
    if isinstance(exc, _TRANSIENT_VAULT_ERRORS + (requests.exceptions.RequestException,)):
        return ProviderUnavailable(f"{context}: {exc}")
    return CredentialAcquisitionError(f"{context}: {exc}")
