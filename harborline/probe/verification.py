"""VerificationProbe: bounded readiness polling over HTTP.

One 2xx response is enough for a Healthy verdict; there is no debouncing of
flapping endpoints.  The probe never raises for an unhealthy endpoint: it
returns the verdict with every attempt it made, and callers decide what a
non-Healthy verdict means.

Verdicts
--------
- Healthy   : a 2xx response was observed before the deadline.
- Unhealthy : the endpoint answered, but never with 2xx (or the check was
  cancelled).
- Timeout   : no HTTP response at all before the deadline.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

import requests

from harborline.models.reports import ProbeAttempt, ProbeResult, ProbeVerdict

logger = logging.getLogger(__name__)

_MIN_REQUEST_TIMEOUT = 0.05


class VerificationProbe:
    """Polls an HTTP endpoint until it is healthy or time runs out.

    Parameters
    ----------
    session:
        ``requests.Session`` (or compatible) used for GETs.
    clock:
        Monotonic clock in seconds.
    sleep:
        Wait function; when omitted, waits on the cancel event or
        ``time.sleep``.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.session = session or requests.Session()
        self._clock = clock
        self._sleep = sleep

    def _wait(self, seconds: float, cancel_event: threading.Event | None) -> bool:
        """Wait; returns True if cancelled."""
        if self._sleep is not None:
            self._sleep(seconds)
        elif cancel_event is not None:
            return cancel_event.wait(seconds)
        else:
            time.sleep(seconds)
        return cancel_event is not None and cancel_event.is_set()

    def _attempt(self, number: int, endpoint: str, request_timeout: float,
                 started: float) -> ProbeAttempt:
        t0 = self._clock()
        status_code: int | None = None
        error = ""
        try:
            response = self.session.get(endpoint, timeout=request_timeout)
            status_code = response.status_code
            response.close()
        except requests.RequestException as exc:
            error = f"{type(exc).__name__}: {exc}"[:200]
        return ProbeAttempt(
            number=number,
            started_at=t0 - started,
            elapsed=self._clock() - t0,
            status_code=status_code,
            error=error,
        )

    def check(
        self,
        endpoint: str,
        timeout: float,
        poll_interval: float,
        *,
        cancel_event: threading.Event | None = None,
    ) -> ProbeResult:
        """Poll *endpoint* every *poll_interval* seconds for up to *timeout*."""
        if timeout <= 0 or poll_interval <= 0:
            raise ValueError("timeout and poll_interval must be positive")

        started = self._clock()
        deadline = started + timeout
        attempts: list[ProbeAttempt] = []
        responded = False
        cancelled = False

        while True:
            now = self._clock()
            if attempts and now >= deadline:
                break
            request_timeout = max(min(poll_interval, deadline - now), _MIN_REQUEST_TIMEOUT)
            attempt = self._attempt(len(attempts) + 1, endpoint, request_timeout, started)
            attempts.append(attempt)
            logger.debug(
                "probe %s #%d -> %s", endpoint, attempt.number, attempt.status_code or attempt.error
            )

            if attempt.healthy:
                result = ProbeResult(
                    endpoint=endpoint,
                    verdict=ProbeVerdict.HEALTHY,
                    attempts=attempts,
                    elapsed=self._clock() - started,
                )
                logger.info("%s healthy after %d attempt(s)", endpoint, len(attempts))
                return result
            if attempt.status_code is not None:
                responded = True

            now = self._clock()
            if now >= deadline:
                break
            wait = min(poll_interval - attempt.elapsed, deadline - now)
            if wait > 0 and self._wait(wait, cancel_event):
                cancelled = True
                break
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                break

        verdict = ProbeVerdict.UNHEALTHY if responded or cancelled else ProbeVerdict.TIMEOUT
        result = ProbeResult(
            endpoint=endpoint,
            verdict=verdict,
            attempts=attempts,
            elapsed=self._clock() - started,
        )
        logger.warning(
            "%s %s after %d attempt(s) in %.1fs",
            endpoint,
            verdict.value,
            len(attempts),
            result.elapsed,
        )
        return result
