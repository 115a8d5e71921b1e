"""Bounded exponential backoff for operations that are safe to repeat.

Only idempotent calls go through here (registry login, push, pull).  The
delay before retry ``n`` (0-based) is ``base_delay * 2 ** n``.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import TypeVar

from pydantic import BaseModel, ConfigDict, Field

from harborline.errors import CancelledError, HarborlineError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """How many times to try, and how long to wait in between."""

    model_config = ConfigDict(frozen=True)

    attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=2.0, ge=0.0)
    exponential_backoff: bool = True

    def delay_for(self, retry_count: int) -> float:
        """Delay before retry number *retry_count* (0-based)."""
        if self.exponential_backoff:
            return self.base_delay * (2 ** retry_count)
        return self.base_delay


def call_with_retry(
    operation: Callable[[], T],
    *,
    policy: RetryPolicy,
    description: str,
    cancel_event: threading.Event | None = None,
    sleep: Callable[[float], None] | None = None,
) -> T:
    """Run *operation*, retrying transient ``HarborlineError`` failures.

    Non-transient errors and any other exception propagate immediately.
    When attempts are exhausted the last error is re-raised.  Waiting
    between attempts is interrupted by *cancel_event*.
    """
    attempt = 0
    while True:
        try:
            return operation()
        except HarborlineError as exc:
            attempt += 1
            if not exc.transient or attempt >= policy.attempts:
                if exc.transient:
                    logger.error(
                        "%s failed after %d attempt(s): %s", description, attempt, exc
                    )
                raise
            delay = policy.delay_for(attempt - 1)
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                description,
                attempt,
                policy.attempts,
                exc,
                delay,
            )
            if sleep is not None:
                sleep(delay)
            elif cancel_event is not None:
                cancel_event.wait(delay)
            else:
                time.sleep(delay)
            if cancel_event is not None and cancel_event.is_set():
                raise CancelledError(f"{description} cancelled during backoff") from exc
