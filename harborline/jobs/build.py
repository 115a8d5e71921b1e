"""Build job: turn a build context into a digest-identified artifact.

``with`` keys
-------------
image (required)
    Local artifact name, e.g. ``static-site``.
context
    Build root, relative to the definition's directory (default ``.``).
recipe
    Recipe file inside the context (default ``Dockerfile``).
tag
    Alias tag (default ``latest``).
build_args / labels
    Tables passed to the builder verbatim.

Outputs: ``reference`` (the ``ArtifactReference``), ``digest``, ``image``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from harborline.errors import JobInputError
from harborline.jobs.base import BaseJob, JobContext
from harborline.models.artifacts import BuildContext


class BuildJob(BaseJob):
    uses = "build"
    display_name = "Build"

    def execute(self, context: JobContext) -> dict[str, Any]:
        image = context.param("image", required=True)
        build_context = _build_context(context)
        reference = context.toolbox.builder.build(
            build_context,
            image,
            tag=str(context.param("tag", "latest")),
            cancel_event=context.cancel_event,
        )
        return {
            "reference": reference.model_dump(mode="json"),
            "digest": reference.digest,
            "image": reference.name,
        }


def _build_context(context: JobContext) -> BuildContext:
    base = context.workdir
    root = Path(context.param("context", "."))
    if not root.is_absolute():
        root = base / root
    build_args = context.param("build_args", {})
    labels = context.param("labels", {})
    if not isinstance(build_args, dict) or not isinstance(labels, dict):
        raise JobInputError(f"Job {context.job_id!r}: build_args and labels must be tables")
    return BuildContext(
        root=root,
        recipe=Path(context.param("recipe", "Dockerfile")),
        build_args={str(k): str(v) for k, v in build_args.items()},
        labels={str(k): str(v) for k, v in labels.items()},
    )
