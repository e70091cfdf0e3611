"""Backoff for transient provider failures.

Only ``ProviderUnavailable`` is retried; the delay doubles after each
attempt.  Everything else propagates on the first failure.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from typing import Callable, TypeVar

from cloud_sessions.lifecycle.errors import ProviderUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclasses.dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0  # seconds, doubles each retry
    sleep: Callable[[float], None] = time.sleep

    def call(self, func: Callable[[], T], description: str = "provider call") -> T:
        for attempt in range(self.max_retries + 1):
            try:
                return func()
            except ProviderUnavailable as exc:
                if attempt >= self.max_retries:
                    raise
                delay = self.base_delay * (2 ** attempt)
                logger.warning(
                    "%s unavailable, retrying in %.1fs (attempt %d): %s",
                    description,
                    delay,
                    attempt + 1,
                    exc,
                )
                self.sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover
