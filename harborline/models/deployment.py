"""Deployment models: port mappings and running instances."""

from __future__ import annotations

import re
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from harborline.models.artifacts import ArtifactReference

_PORT_SPEC = re.compile(r"^(?P<host>\d{1,5}):(?P<container>\d{1,5})(?:/(?P<proto>tcp|udp))?$")


class PortMapping(BaseModel):
    """Host port -> container port binding."""

    model_config = ConfigDict(frozen=True)

    host_port: int = Field(ge=1, le=65535)
    container_port: int = Field(ge=1, le=65535)
    protocol: str = "tcp"

    @classmethod
    def parse(cls, spec: str) -> PortMapping:
        """Parse ``"8080:80"`` or ``"53:53/udp"``."""
        match = _PORT_SPEC.match(spec.strip())
        if match is None:
            raise ValueError(f"Invalid port mapping {spec!r}; expected HOST:CONTAINER[/tcp|udp]")
        return cls(
            host_port=int(match.group("host")),
            container_port=int(match.group("container")),
            protocol=match.group("proto") or "tcp",
        )

    def as_flag(self) -> str:
        """Render as the value of a ``--publish`` flag."""
        return f"{self.host_port}:{self.container_port}/{self.protocol}"


class RunningContainer(BaseModel):
    """One row of a target's container listing."""

    model_config = ConfigDict(frozen=True)

    name: str
    instance_id: str = ""
    image: str = ""


class DeployedInstance(BaseModel):
    """A container started by a DeploymentTarget.

    ``durable`` is False for instances on ephemeral runners: those vanish
    when the hosting environment is torn down, whether or not anybody
    called ``stop()``.
    """

    model_config = ConfigDict(frozen=True)

    target_host: str
    artifact: ArtifactReference
    ports: list[PortMapping] = []
    name: str
    instance_id: str
    durable: bool = True
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def endpoint(self, container_port: int = 80, scheme: str = "http") -> str:
        """URL of the host side of the binding for *container_port*."""
        for port in self.ports:
            if port.container_port == container_port:
                return f"{scheme}://{self.target_host}:{port.host_port}"
        raise KeyError(f"Instance {self.name} does not publish container port {container_port}")
