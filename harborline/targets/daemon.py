"""Durable targets: the local daemon and a remote host's daemon."""

from __future__ import annotations

from urllib.parse import urlsplit

from harborline.runtime.docker_cli import CommandRunner, DockerCli
from harborline.targets.base import DockerDaemonTarget


class LocalDaemonTarget(DockerDaemonTarget):
    """The container daemon on this machine."""

    def __init__(
        self,
        docker: DockerCli | None = None,
        *,
        public_host: str = "localhost",
    ) -> None:
        super().__init__(docker or DockerCli(), public_host=public_host)


class RemoteHostTarget(DockerDaemonTarget):
    """A daemon on another machine, e.g. ``ssh://deploy@web1.example.com``.

    Containers outlive the orchestrator process.  ``public_host`` defaults to
    the hostname part of *address*.
    """

    def __init__(
        self,
        address: str,
        *,
        public_host: str | None = None,
        runner: CommandRunner | None = None,
        binary: str = "docker",
        timeout: float | None = 600.0,
    ) -> None:
        if "://" not in address:
            address = f"ssh://{address}"
        self.address = address
        docker = DockerCli(runner, binary=binary, host=address, timeout=timeout)
        super().__init__(docker, public_host=public_host or urlsplit(address).hostname or address)
