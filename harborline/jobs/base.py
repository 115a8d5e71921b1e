"""Abstract base job with an enforced lifecycle.

Every concrete job inherits from BaseJob and implements only ``execute()``.
The ``run_job()`` wrapper is **not overridable**; it enforces the canonical
lifecycle ordering:

    check cancellation -> execute -> check outputs -> log

Errors from ``execute()`` propagate to the orchestrator, which fails the job
and skips its dependents.  Typed ``HarborlineError`` subclasses pass through
untouched so their diagnostics reach the report; anything else is wrapped in
``JobExecutionError``.
"""

from __future__ import annotations

import abc
import functools
import logging
import threading
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any, ClassVar, final

from harborline.build.builder import ArtifactBuilder
from harborline.config import HarborlineSettings
from harborline.core.retry import RetryPolicy
from harborline.errors import CancelledError, HarborlineError, JobInputError
from harborline.models.artifacts import Credential
from harborline.models.deployment import DeployedInstance
from harborline.probe.verification import VerificationProbe
from harborline.registry.backends import DirectoryRegistryBackend, DockerRegistryBackend
from harborline.registry.client import RegistryClient
from harborline.runtime.docker_cli import CommandRunner, DockerCli
from harborline.targets.base import DeploymentTarget
from harborline.targets.daemon import LocalDaemonTarget, RemoteHostTarget
from harborline.targets.ephemeral import EphemeralRunnerTarget

logger = logging.getLogger(__name__)

DIRECTORY_REGISTRY_SCHEME = "dir://"

# (job_id, instances) called when an ephemeral runner used by job_id ends
TeardownObserver = Callable[[str, list[DeployedInstance]], None]


class JobExecutionError(HarborlineError):
    """Raised when a job's execute() fails with an untyped exception."""


# ---------------------------------------------------------------------------
# Toolbox: the components jobs drive
# ---------------------------------------------------------------------------


class Toolbox:
    """Factory and cache for the components jobs use.

    Targets are cached by their spec so that deploy, verify and teardown
    share one ``EphemeralRunnerTarget`` per run.  A runner that has been
    torn down is replaced by a fresh one on the next lookup, so a toolbox
    can serve several runs.  Tests pass fakes for any component.

    Parameters
    ----------
    settings:
        Runtime settings (binary, timeouts, retry policy).
    runner:
        Command runner shared by every ``DockerCli`` this toolbox creates.
    """

    def __init__(
        self,
        settings: HarborlineSettings | None = None,
        *,
        runner: CommandRunner | None = None,
        builder: ArtifactBuilder | None = None,
        probe: VerificationProbe | None = None,
        registry_clients: dict[str, RegistryClient] | None = None,
        targets: dict[str, DeploymentTarget] | None = None,
    ) -> None:
        self.settings = settings or HarborlineSettings()
        self._runner = runner
        self._lock = threading.Lock()
        self.builder = builder or ArtifactBuilder(self.docker())
        self.probe = probe or VerificationProbe()
        self._registry_clients: dict[str, RegistryClient] = dict(registry_clients or {})
        self._targets: dict[str, DeploymentTarget] = dict(targets or {})

    def docker(self, host: str | None = None) -> DockerCli:
        return DockerCli(
            self._runner,
            binary=self.settings.docker_binary,
            host=host,
            timeout=self.settings.command_timeout_seconds,
        )

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            attempts=self.settings.retry_attempts,
            base_delay=self.settings.retry_base_delay_seconds,
        )

    def registry_client(self, registry: str) -> RegistryClient:
        """Client for *registry*; ``dir:///path`` selects a directory registry."""
        with self._lock:
            client = self._registry_clients.get(registry)
            if client is None:
                if registry.startswith(DIRECTORY_REGISTRY_SCHEME):
                    backend = DirectoryRegistryBackend(registry[len(DIRECTORY_REGISTRY_SCHEME):])
                else:
                    backend = DockerRegistryBackend(self.docker())
                client = RegistryClient(backend, policy=self.retry_policy)
                self._registry_clients[registry] = client
            return client

    def target(self, spec: str | Mapping[str, Any]) -> DeploymentTarget:
        """Resolve a target spec: ``"local"``, ``"ephemeral"`` or a mapping.

        Mapping keys: ``kind`` (local | remote | ephemeral), ``address`` and
        ``public_host``.
        """
        if isinstance(spec, str):
            spec = {"kind": spec}
        kind = spec.get("kind", "local")
        key = f"{kind}|{spec.get('address', '')}|{spec.get('public_host', '')}"
        with self._lock:
            target = self._targets.get(key) or self._targets.get(kind)
            if target is not None and not _is_spent(target):
                return target
            public_host = spec.get("public_host")
            if kind == "local":
                target = LocalDaemonTarget(self.docker(), public_host=public_host or "localhost")
            elif kind == "ephemeral":
                target = EphemeralRunnerTarget(self.docker(), public_host=public_host or "localhost")
            elif kind == "remote":
                address = spec.get("address")
                if not address:
                    raise JobInputError("A remote target needs an 'address'")
                target = RemoteHostTarget(
                    address,
                    public_host=public_host,
                    runner=self._runner,
                    binary=self.settings.docker_binary,
                    timeout=self.settings.command_timeout_seconds,
                )
            else:
                raise JobInputError(f"Unknown target kind {kind!r}")
            self._targets[key] = target
            return target


def _is_spent(target: DeploymentTarget) -> bool:
    return isinstance(target, EphemeralRunnerTarget) and target.torn_down


# ---------------------------------------------------------------------------
# Job context
# ---------------------------------------------------------------------------


class JobContext:
    """Everything one job execution may touch.

    ``upstream`` maps ancestor job ids (nearest first) to their read-only
    outputs.  ``credential`` is handed in explicitly by the orchestrator and
    dropped when the job ends.  Relative paths in ``params`` resolve against
    ``workdir``, the directory of the pipeline definition.
    """

    def __init__(
        self,
        *,
        run_id: str,
        job_id: str,
        params: Mapping[str, Any],
        upstream: Mapping[str, Mapping[str, Any]],
        toolbox: Toolbox,
        credential: Credential | None = None,
        cancel_event: threading.Event | None = None,
        teardown: list[EphemeralRunnerTarget] | None = None,
        teardown_observer: TeardownObserver | None = None,
        workdir: Path | None = None,
    ) -> None:
        self.run_id = run_id
        self.job_id = job_id
        self.params = MappingProxyType(dict(params))
        self.upstream = MappingProxyType(
            {jid: MappingProxyType(dict(out)) for jid, out in upstream.items()}
        )
        self.toolbox = toolbox
        self.credential = credential
        self.cancel_event = cancel_event or threading.Event()
        self._teardown = teardown if teardown is not None else []
        self._teardown_observer = teardown_observer
        self.workdir = workdir or Path(".")

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def param(self, key: str, default: Any = None, *, required: bool = False) -> Any:
        if key in self.params:
            return self.params[key]
        if required:
            raise JobInputError(f"Job {self.job_id!r} requires parameter {key!r}")
        return default

    def upstream_value(self, key: str) -> Any:
        """The nearest ancestor's output called *key*."""
        for outputs in self.upstream.values():
            if key in outputs:
                return outputs[key]
        raise JobInputError(
            f"Job {self.job_id!r} needs an upstream output {key!r}; "
            f"ancestors provide {sorted({k for o in self.upstream.values() for k in o})}"
        )

    def register_teardown(self, target: EphemeralRunnerTarget) -> None:
        """Ask the orchestrator to tear *target* down when the run ends.

        The run's teardown observer is subscribed through
        ``target.on_teardown`` and sees the runner's instances before they
        are destroyed.
        """
        if target not in self._teardown:
            self._teardown.append(target)
        if self._teardown_observer is not None:
            target.on_teardown(functools.partial(self._teardown_observer, self.job_id))


# ---------------------------------------------------------------------------
# Base job
# ---------------------------------------------------------------------------


class BaseJob(abc.ABC):
    """Abstract base for all pipeline jobs.

    Subclasses **must** set ``uses`` and implement ``execute(context)``.
    Subclasses **must not** override ``run_job()``.
    """

    uses: ClassVar[str] = ""
    display_name: ClassVar[str] = ""

    @abc.abstractmethod
    def execute(self, context: JobContext) -> dict[str, Any]:
        """Execute the job's core logic and return JSON-serializable outputs."""
        ...

    @final
    def run_job(self, context: JobContext) -> dict[str, Any]:
        """Execute the full job lifecycle.  **Do not override.**"""
        if context.cancelled:
            raise CancelledError(f"Job {context.job_id} cancelled before it started")

        started = time.monotonic()
        logger.info("%s [%s] started", self.display_name or self.uses, context.job_id)
        try:
            outputs = self.execute(context)
        except HarborlineError as exc:
            logger.error("%s [%s] failed: %s", self.display_name or self.uses, context.job_id, exc)
            raise
        except Exception as exc:
            logger.error("%s [%s] failed: %s", self.display_name or self.uses, context.job_id, exc)
            raise JobExecutionError(f"Job {context.job_id} failed: {exc}") from exc

        if not isinstance(outputs, dict):
            raise JobExecutionError(
                f"Job {context.job_id} returned {type(outputs).__name__}, expected dict"
            )
        logger.info(
            "%s [%s] succeeded in %.2fs, outputs: %s",
            self.display_name or self.uses,
            context.job_id,
            time.monotonic() - started,
            ", ".join(sorted(outputs)) or "none",
        )
        return outputs

    def __repr__(self) -> str:
        return f"<{type(self).__name__} uses={self.uses!r}>"
