"""Verify job: probe the deployed endpoint, optionally rolling back.

``with`` keys
-------------
endpoint
    URL to probe (default: the upstream Deploy's ``endpoint``).
timeout / interval
    Probe bounds in seconds (defaults from settings).
rollback
    On a non-Healthy verdict, stop the new container and restart the
    previously running image recorded by Deploy (default false).

A non-Healthy verdict fails the job with ``VerificationError`` carrying the
full attempt sequence.
"""

from __future__ import annotations

import logging
from typing import Any

from harborline.errors import JobInputError, RunError, VerificationError
from harborline.jobs.base import BaseJob, JobContext
from harborline.models.deployment import PortMapping
from harborline.targets.base import pinned_reference

logger = logging.getLogger(__name__)


class VerifyJob(BaseJob):
    uses = "verify"
    display_name = "Verify"

    def execute(self, context: JobContext) -> dict[str, Any]:
        settings = context.toolbox.settings
        endpoint = context.param("endpoint") or context.upstream_value("endpoint")
        if not endpoint:
            raise JobInputError(f"Job {context.job_id!r} has no endpoint to probe")
        timeout = float(context.param("timeout", settings.probe_timeout_seconds))
        interval = float(context.param("interval", settings.probe_interval_seconds))

        result = context.toolbox.probe.check(
            endpoint, timeout, interval, cancel_event=context.cancel_event
        )
        if result.healthy:
            return {
                "endpoint": endpoint,
                "verdict": result.verdict.value,
                "attempts": len(result.attempts),
                "elapsed": round(result.elapsed, 3),
            }

        rolled_back = False
        rollback_error = ""
        if context.param("rollback", False):
            try:
                rolled_back = self._rollback(context)
            except RunError as exc:
                logger.error("Rollback of %s failed: %s", endpoint, exc)
                rollback_error = str(exc)
        raise VerificationError(
            f"{endpoint} is {result.verdict.value} after {len(result.attempts)} attempt(s)",
            verdict=result.verdict.value,
            endpoint=endpoint,
            attempts=result.summary(),
            rolled_back=rolled_back,
            rollback_error=rollback_error,
        )

    @staticmethod
    def _rollback(context: JobContext) -> bool:
        """Stop the new container; restart the previous image if it is pinned."""
        target = context.toolbox.target(context.upstream_value("target"))
        name = context.upstream_value("name")
        target.stop(name)

        previous = context.upstream_value("previous_image")
        reference = pinned_reference(previous) if previous else None
        if reference is None:
            logger.warning("Stopped %s; no digest-pinned previous image to restore", name)
            return False
        ports = [PortMapping.parse(spec) for spec in context.upstream_value("ports")]
        target.run(reference, ports, name)
        logger.warning("Rolled %s back to %s", name, reference.pinned)
        return True
