"""Abstract deployment target with the minimum control surface.

Every target can pull an artifact, run it with a port mapping under a name,
list what is running, and stop by name.  ``run()`` never replaces a running
container: a name clash raises ``NameConflictError`` and the caller decides
whether to stop-then-run or pick another name.  ``stop()`` is idempotent.
"""

from __future__ import annotations

import abc
import logging
import threading
from typing import ClassVar

from harborline.errors import NameConflictError, RunError
from harborline.models.artifacts import ArtifactReference
from harborline.models.deployment import DeployedInstance, PortMapping, RunningContainer
from harborline.runtime.docker_cli import CommandResult, DockerCli

logger = logging.getLogger(__name__)

_NAME_IN_USE = "is already in use"
_NO_SUCH_CONTAINER = "no such container"


def pinned_reference(image: str) -> ArtifactReference | None:
    """Parse a digest-pinned ``name@sha256:...`` image string, else None."""
    name, sep, digest = image.partition("@")
    if not sep or ":" not in digest or not name:
        return None
    return ArtifactReference(name=name, tag="", digest=digest)


class DeploymentTarget(abc.ABC):
    """A place that can run a container.

    Subclasses **must** implement ``pull``, ``run``, ``stop`` and
    ``list_containers``.  ``durable`` is False for targets whose containers
    disappear when the hosting environment ends.
    """

    durable: ClassVar[bool] = True

    @property
    @abc.abstractmethod
    def host(self) -> str:
        """Address clients use to reach published ports."""
        ...

    @abc.abstractmethod
    def pull(self, ref: ArtifactReference, *, cancel_event: threading.Event | None = None) -> None:
        ...

    @abc.abstractmethod
    def run(
        self,
        ref: ArtifactReference,
        ports: list[PortMapping],
        name: str,
        *,
        cancel_event: threading.Event | None = None,
    ) -> DeployedInstance:
        ...

    @abc.abstractmethod
    def stop(self, instance: DeployedInstance | str, *,
             cancel_event: threading.Event | None = None) -> None:
        ...

    @abc.abstractmethod
    def list_containers(self, *, cancel_event: threading.Event | None = None) -> list[RunningContainer]:
        ...

    def find(self, name: str, *, cancel_event: threading.Event | None = None) -> RunningContainer | None:
        """The running container called *name*, if any."""
        for container in self.list_containers(cancel_event=cancel_event):
            if container.name == name:
                return container
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} host={self.host!r}>"


class DockerDaemonTarget(DeploymentTarget):
    """Target backed by a Docker daemon reached through ``DockerCli``."""

    def __init__(self, docker: DockerCli, *, public_host: str) -> None:
        self.docker = docker
        self._public_host = public_host

    @property
    def host(self) -> str:
        return self._public_host

    def _error(self, message: str, result: CommandResult) -> RunError:
        return RunError(
            f"{message}: exit {result.returncode}",
            target=self.host,
            exit_code=result.returncode,
            log_tail=result.tail(20),
        )

    def pull(self, ref: ArtifactReference, *, cancel_event: threading.Event | None = None) -> None:
        result = self.docker.pull(ref.pinned, cancel_event=cancel_event)
        if not result.ok:
            raise self._error(f"Pull of {ref.pinned} on {self.host} failed", result)

    def run(
        self,
        ref: ArtifactReference,
        ports: list[PortMapping],
        name: str,
        *,
        cancel_event: threading.Event | None = None,
    ) -> DeployedInstance:
        if self.find(name, cancel_event=cancel_event) is not None:
            raise NameConflictError(name, target=self.host)

        result = self.docker.run_detached(ref.pinned, name, ports, cancel_event=cancel_event)
        if not result.ok:
            if _NAME_IN_USE in result.output:
                raise NameConflictError(name, target=self.host)
            raise self._error(f"Starting {name} from {ref.pinned} failed", result)

        instance = DeployedInstance(
            target_host=self.host,
            artifact=ref,
            ports=list(ports),
            name=name,
            instance_id=result.stdout_line,
            durable=self.durable,
        )
        logger.info(
            "Started %s (%s) on %s with ports %s",
            name,
            instance.instance_id[:12],
            self.host,
            ", ".join(p.as_flag() for p in ports) or "none",
        )
        return instance

    def stop(self, instance: DeployedInstance | str, *,
             cancel_event: threading.Event | None = None) -> None:
        name = instance if isinstance(instance, str) else instance.name
        result = self.docker.remove(name, cancel_event=cancel_event)
        if result.ok:
            logger.info("Stopped %s on %s", name, self.host)
            return
        if _NO_SUCH_CONTAINER in result.output.lower():
            logger.debug("%s already stopped on %s", name, self.host)
            return
        raise self._error(f"Stopping {name} failed", result)

    def list_containers(self, *, cancel_event: threading.Event | None = None) -> list[RunningContainer]:
        result = self.docker.list_running(cancel_event=cancel_event)
        if not result.ok:
            raise self._error(f"Listing containers on {self.host} failed", result)
        containers = []
        for line in result.output.splitlines():
            if not line.strip():
                continue
            name, _, rest = line.partition("\t")
            instance_id, _, image = rest.partition("\t")
            containers.append(
                RunningContainer(name=name.strip(), instance_id=instance_id.strip(), image=image.strip())
            )
        return containers
