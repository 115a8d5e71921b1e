"""The single seam to the external container tool.

``CommandRunner`` is the protocol every component uses to execute the tool;
``SubprocessRunner`` is the real implementation and tests substitute fakes.
``DockerCli`` turns the operations the orchestrator needs into argument
lists.  Output is captured as an opaque log: callers decide success from the
exit status alone and keep the tail for diagnostics.
"""

from __future__ import annotations

import logging
import subprocess
import threading
import time
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from harborline.errors import CancelledError
from harborline.models.deployment import PortMapping

logger = logging.getLogger(__name__)

# How often a running command checks for cancellation.
_POLL_SECONDS = 0.25


class CommandResult(BaseModel):
    """Exit status and combined stdout/stderr of one command."""

    model_config = ConfigDict(frozen=True)

    args: list[str]
    returncode: int
    output: str = ""
    duration: float = 0.0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def tail(self, lines: int = 40) -> list[str]:
        """Last *lines* lines of output."""
        return self.output.splitlines()[-lines:]

    @property
    def stdout_line(self) -> str:
        """First non-empty output line, stripped."""
        for line in self.output.splitlines():
            if line.strip():
                return line.strip()
        return ""


@runtime_checkable
class CommandRunner(Protocol):
    """Protocol for executing an external command."""

    def run(
        self,
        args: Sequence[str],
        *,
        input: str | None = None,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> CommandResult:
        ...


class SubprocessRunner:
    """Runs commands with ``subprocess``, honoring timeout and cancellation.

    A timed-out command is killed and reported with ``timed_out=True``.  A
    cancelled command is terminated and ``CancelledError`` is raised.
    """

    def run(
        self,
        args: Sequence[str],
        *,
        input: str | None = None,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> CommandResult:
        argv = list(args)
        started = time.monotonic()
        deadline = started + timeout if timeout is not None else None
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE if input is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
            )
        except OSError as exc:
            return CommandResult(args=argv, returncode=127, output=str(exc))

        pending_input = input
        while True:
            try:
                output, _ = proc.communicate(pending_input, timeout=_POLL_SECONDS)
                break
            except subprocess.TimeoutExpired:
                pending_input = None
            if cancel_event is not None and cancel_event.is_set():
                proc.terminate()
                try:
                    proc.communicate(timeout=5)
                except subprocess.TimeoutExpired:
                    proc.kill()
                    proc.communicate()
                raise CancelledError(f"Command cancelled: {argv[0]} {argv[1] if len(argv) > 1 else ''}")
            if deadline is not None and time.monotonic() >= deadline:
                proc.kill()
                output, _ = proc.communicate()
                logger.warning("Command timed out after %.0fs: %s", timeout, argv[:2])
                return CommandResult(
                    args=argv,
                    returncode=proc.returncode if proc.returncode is not None else -9,
                    output=output or "",
                    duration=time.monotonic() - started,
                    timed_out=True,
                )

        return CommandResult(
            args=argv,
            returncode=proc.returncode,
            output=output or "",
            duration=time.monotonic() - started,
        )


class DockerCli:
    """Argument builder for the ``docker`` command line.

    Parameters
    ----------
    runner:
        Executes the commands.  Defaults to ``SubprocessRunner``.
    binary:
        Name or path of the container tool.
    host:
        Daemon address (``ssh://user@host``, ``tcp://...``); None for local.
    timeout:
        Per-command timeout in seconds.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        binary: str = "docker",
        host: str | None = None,
        timeout: float | None = 600.0,
    ) -> None:
        self.runner: CommandRunner = runner or SubprocessRunner()
        self.binary = binary
        self.host = host
        self.timeout = timeout

    def __call__(
        self,
        *args: str,
        input: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> CommandResult:
        argv = [self.binary]
        if self.host:
            argv += ["--host", self.host]
        argv += list(args)
        logger.debug("exec %s", " ".join(argv[:4]))
        return self.runner.run(
            argv, input=input, timeout=self.timeout, cancel_event=cancel_event
        )

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def build(
        self,
        root: str,
        recipe: str,
        tag: str,
        *,
        build_args: dict[str, str] | None = None,
        labels: dict[str, str] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> CommandResult:
        args = ["build", "--file", recipe, "--tag", tag]
        for key, value in sorted((build_args or {}).items()):
            args += ["--build-arg", f"{key}={value}"]
        for key, value in sorted((labels or {}).items()):
            args += ["--label", f"{key}={value}"]
        args.append(root)
        return self(*args, cancel_event=cancel_event)

    def image_id(self, ref: str, *, cancel_event: threading.Event | None = None) -> CommandResult:
        return self("image", "inspect", "--format", "{{.Id}}", ref, cancel_event=cancel_event)

    def repo_digests(self, ref: str, *, cancel_event: threading.Event | None = None) -> CommandResult:
        return self(
            "image", "inspect", "--format", "{{range .RepoDigests}}{{println .}}{{end}}", ref,
            cancel_event=cancel_event,
        )

    def tag(self, source: str, target: str, *, cancel_event: threading.Event | None = None) -> CommandResult:
        return self("tag", source, target, cancel_event=cancel_event)

    def push(self, ref: str, *, cancel_event: threading.Event | None = None) -> CommandResult:
        return self("push", ref, cancel_event=cancel_event)

    def pull(self, ref: str, *, cancel_event: threading.Event | None = None) -> CommandResult:
        return self("pull", ref, cancel_event=cancel_event)

    def manifest_exists(self, ref: str, *, cancel_event: threading.Event | None = None) -> CommandResult:
        return self("manifest", "inspect", ref, cancel_event=cancel_event)

    def login(
        self,
        registry: str,
        username: str,
        password: str,
        *,
        cancel_event: threading.Event | None = None,
    ) -> CommandResult:
        # The secret travels on stdin, never on the command line.
        return self(
            "login", registry, "--username", username, "--password-stdin",
            input=password, cancel_event=cancel_event,
        )

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def run_detached(
        self,
        image: str,
        name: str,
        ports: list[PortMapping],
        *,
        cancel_event: threading.Event | None = None,
    ) -> CommandResult:
        args = ["run", "--detach", "--name", name]
        for port in ports:
            args += ["--publish", port.as_flag()]
        args.append(image)
        return self(*args, cancel_event=cancel_event)

    def list_running(self, *, cancel_event: threading.Event | None = None) -> CommandResult:
        return self("ps", "--format", "{{.Names}}\t{{.ID}}\t{{.Image}}", cancel_event=cancel_event)

    def remove(self, name: str, *, cancel_event: threading.Event | None = None) -> CommandResult:
        return self("rm", "--force", name, cancel_event=cancel_event)
