"""Ephemeral runner target: containers that vanish with their host job.

This models a CI runner: whatever it starts is destroyed when the hosting
job ends.  That non-durability is part of the contract.  Anything that must
observe a running instance (verification) has to happen before
``teardown()``; the orchestrator calls ``teardown()`` only after every job
of the run is terminal.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import ClassVar

from harborline.errors import RunError
from harborline.models.artifacts import ArtifactReference
from harborline.models.deployment import DeployedInstance, PortMapping
from harborline.runtime.docker_cli import DockerCli
from harborline.targets.daemon import LocalDaemonTarget

logger = logging.getLogger(__name__)

TeardownCallback = Callable[[list[DeployedInstance]], None]


class EphemeralRunnerTarget(LocalDaemonTarget):
    """Local daemon whose instances are destroyed at ``teardown()``."""

    durable: ClassVar[bool] = False

    def __init__(self, docker: DockerCli | None = None, *, public_host: str = "localhost") -> None:
        super().__init__(docker, public_host=public_host)
        self._lock = threading.Lock()
        self._instances: list[DeployedInstance] = []
        self._callbacks: list[TeardownCallback] = []
        self._torn_down = False
        self._errors: dict[str, str] = {}

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    @property
    def teardown_errors(self) -> dict[str, str]:
        """Instance name -> error for instances teardown could not destroy."""
        with self._lock:
            return dict(self._errors)

    @property
    def instances(self) -> list[DeployedInstance]:
        with self._lock:
            return list(self._instances)

    def on_teardown(self, callback: TeardownCallback) -> None:
        """Register *callback* to receive the live instances at teardown."""
        with self._lock:
            if self._torn_down:
                raise RunError("Runner already torn down", target=self.host)
            self._callbacks.append(callback)

    def run(
        self,
        ref: ArtifactReference,
        ports: list[PortMapping],
        name: str,
        *,
        cancel_event: threading.Event | None = None,
    ) -> DeployedInstance:
        if self._torn_down:
            raise RunError("Runner already torn down", target=self.host)
        instance = super().run(ref, ports, name, cancel_event=cancel_event)
        with self._lock:
            self._instances.append(instance)
        return instance

    def stop(self, instance: DeployedInstance | str, *,
             cancel_event: threading.Event | None = None) -> None:
        super().stop(instance, cancel_event=cancel_event)
        name = instance if isinstance(instance, str) else instance.name
        with self._lock:
            self._instances = [i for i in self._instances if i.name != name]

    def teardown(self) -> list[DeployedInstance]:
        """End the runner: notify callbacks, then destroy every instance.

        Callbacks fire once.  An instance that fails to stop is logged, kept
        in ``instances`` and ``teardown_errors``, and retried by the next
        call; the others are still destroyed.  Returns the instances that
        were destroyed by this call.
        """
        with self._lock:
            first = not self._torn_down
            self._torn_down = True
            instances = list(self._instances)
            callbacks = list(self._callbacks) if first else []
            self._callbacks.clear()

        for callback in callbacks:
            try:
                callback(instances)
            except Exception:
                logger.exception("Teardown callback %r failed", callback)

        destroyed: list[DeployedInstance] = []
        for instance in instances:
            try:
                super().stop(instance)
            except RunError as exc:
                logger.error("Ephemeral runner could not destroy %s: %s", instance.name, exc)
                with self._lock:
                    self._errors[instance.name] = str(exc)
                continue
            destroyed.append(instance)
            with self._lock:
                self._errors.pop(instance.name, None)
                self._instances = [i for i in self._instances if i.name != instance.name]

        if destroyed:
            logger.warning(
                "Ephemeral runner torn down; destroyed %s",
                ", ".join(i.name for i in destroyed),
            )
        return destroyed
