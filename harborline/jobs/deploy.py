"""Deploy job: run the upstream artifact on a deployment target.

``with`` keys
-------------
name (required)
    Container name on the target.
target
    ``"local"`` (default), ``"ephemeral"`` or a table with ``kind``,
    ``address`` and ``public_host``.
ports
    List of ``HOST:CONTAINER[/proto]`` strings (default ``["80:80"]``).
replace
    Stop a running container of the same name first (default false).  The
    stopped container's image is reported as ``previous_image`` so Verify
    can roll back to it.

The artifact is always started by digest, never by tag.
"""

from __future__ import annotations

import logging
from typing import Any

from harborline.errors import JobInputError, NameConflictError
from harborline.jobs.base import BaseJob, JobContext
from harborline.models.artifacts import ArtifactReference
from harborline.models.deployment import PortMapping
from harborline.targets.ephemeral import EphemeralRunnerTarget

logger = logging.getLogger(__name__)


class DeployJob(BaseJob):
    uses = "deploy"
    display_name = "Deploy"

    def execute(self, context: JobContext) -> dict[str, Any]:
        name = context.param("name", required=True)
        target_spec = context.param("target", "local")
        ports = _parse_ports(context)
        reference = ArtifactReference(**context.upstream_value("reference"))

        target = context.toolbox.target(target_spec)
        if isinstance(target, EphemeralRunnerTarget):
            context.register_teardown(target)

        target.pull(reference, cancel_event=context.cancel_event)

        previous_image = None
        existing = target.find(name, cancel_event=context.cancel_event)
        if existing is not None:
            if not context.param("replace", False):
                raise NameConflictError(name, target=target.host)
            previous_image = existing.image
            logger.info("Replacing %s (%s) on %s", name, existing.image, target.host)
            target.stop(name, cancel_event=context.cancel_event)

        instance = target.run(reference, ports, name, cancel_event=context.cancel_event)
        container_port = ports[0].container_port if ports else None
        return {
            "instance": instance.model_dump(mode="json"),
            "name": instance.name,
            "target": target_spec,
            "ports": [p.as_flag() for p in ports],
            "endpoint": instance.endpoint(container_port) if container_port else None,
            "previous_image": previous_image,
        }


def _parse_ports(context: JobContext) -> list[PortMapping]:
    raw = context.param("ports", ["80:80"])
    if isinstance(raw, str):
        raw = [raw]
    try:
        return [PortMapping.parse(str(spec)) for spec in raw]
    except ValueError as exc:
        raise JobInputError(f"Job {context.job_id!r}: {exc}") from exc
