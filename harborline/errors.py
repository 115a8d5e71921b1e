"""Error taxonomy.

Every error knows whether retrying it can help (``transient``) and what it
contributes to the pipeline report (``diagnostics()``).  Only registry
operations are retried; everything else fails the owning job.
"""

from __future__ import annotations

from typing import Any


class HarborlineError(Exception):
    """Base class for all orchestrator errors."""

    transient: bool = False

    def diagnostics(self) -> dict[str, Any]:
        return {"error_type": type(self).__name__, "message": str(self)}


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------


class BuildError(HarborlineError):
    """The external builder failed.  Deterministic for a given context."""

    def __init__(self, message: str, *, stage: str, exit_code: int | None = None,
                 log_tail: list[str] | None = None) -> None:
        super().__init__(message)
        self.stage = stage
        self.exit_code = exit_code
        self.log_tail = log_tail or []

    def diagnostics(self) -> dict[str, Any]:
        return {
            **super().diagnostics(),
            "stage": self.stage,
            "exit_code": self.exit_code,
            "log_tail": list(self.log_tail),
        }


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class RegistryError(HarborlineError):
    """Base for registry failures.  Transient unless stated otherwise."""

    transient = True

    def __init__(self, message: str, *, registry: str = "", transient: bool | None = None,
                 exit_code: int | None = None, log_tail: list[str] | None = None) -> None:
        super().__init__(message)
        self.registry = registry
        if transient is not None:
            self.transient = transient
        self.exit_code = exit_code
        self.log_tail = log_tail or []

    def diagnostics(self) -> dict[str, Any]:
        return {
            **super().diagnostics(),
            "registry": self.registry,
            "transient": self.transient,
            "exit_code": self.exit_code,
            "log_tail": list(self.log_tail),
        }


class AuthError(RegistryError):
    """Login to a registry failed."""


class PushError(RegistryError):
    """Uploading an artifact or updating a tag failed."""


class PullError(RegistryError):
    """Downloading an artifact or resolving a tag failed."""


# ---------------------------------------------------------------------------
# Deployment
# ---------------------------------------------------------------------------


class RunError(HarborlineError):
    """A deployment target could not pull, start or stop a container."""

    def __init__(self, message: str, *, target: str = "", exit_code: int | None = None,
                 log_tail: list[str] | None = None) -> None:
        super().__init__(message)
        self.target = target
        self.exit_code = exit_code
        self.log_tail = log_tail or []

    def diagnostics(self) -> dict[str, Any]:
        return {
            **super().diagnostics(),
            "target": self.target,
            "exit_code": self.exit_code,
            "log_tail": list(self.log_tail),
        }


class NameConflictError(RunError):
    """A container with the requested name is already running."""

    def __init__(self, name: str, *, target: str = "") -> None:
        super().__init__(
            f"A container named {name!r} already runs on {target or 'the target'}; "
            "stop it first or choose a unique name",
            target=target,
        )
        self.name = name


# ---------------------------------------------------------------------------
# Definitions and jobs
# ---------------------------------------------------------------------------


class DefinitionError(HarborlineError):
    """The pipeline definition is malformed.  Raised before any job runs."""

    def __init__(self, message: str, *, problems: list[str] | None = None) -> None:
        super().__init__(message)
        self.problems = problems or []

    def diagnostics(self) -> dict[str, Any]:
        return {**super().diagnostics(), "problems": list(self.problems)}


class JobInputError(HarborlineError):
    """A job's parameters or upstream outputs are unusable."""


class VerificationError(HarborlineError):
    """The deployed endpoint did not become healthy."""

    def __init__(self, message: str, *, verdict: str, endpoint: str,
                 attempts: list[str] | None = None, rolled_back: bool = False,
                 rollback_error: str = "") -> None:
        super().__init__(message)
        self.verdict = verdict
        self.endpoint = endpoint
        self.attempts = attempts or []
        self.rolled_back = rolled_back
        self.rollback_error = rollback_error

    def diagnostics(self) -> dict[str, Any]:
        return {
            **super().diagnostics(),
            "verdict": self.verdict,
            "endpoint": self.endpoint,
            "attempts": list(self.attempts),
            "rolled_back": self.rolled_back,
            "rollback_error": self.rollback_error,
        }


class CancelledError(HarborlineError):
    """The run was cancelled while a blocking call was in progress."""
