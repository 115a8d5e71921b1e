"""Publish job: push the upstream artifact to a registry.

``with`` keys
-------------
registry (required)
    Registry host, or ``dir:///path`` for a directory-backed registry.
repository
    Target repository (default: the built image name).
tag
    Tag to push (default: the built tag).
promote
    Extra tags to point at the pushed digest once the push succeeded.

The push is idempotent by digest, so re-running a publish whose artifact is
already present succeeds with ``pushed = false`` and the same digest.  When
no credential is handed in, the push uses an anonymous session.
"""

from __future__ import annotations

from typing import Any

from harborline.errors import JobInputError
from harborline.jobs.base import BaseJob, JobContext
from harborline.models.artifacts import ArtifactReference, Session


class PublishJob(BaseJob):
    uses = "publish"
    display_name = "Publish"

    def execute(self, context: JobContext) -> dict[str, Any]:
        registry = context.param("registry", required=True)
        artifact = ArtifactReference(**context.upstream_value("reference"))
        repository = context.param("repository") or artifact.name.rsplit("/", 1)[-1]
        tag = context.param("tag") or artifact.tag or "latest"
        promote = context.param("promote", [])
        if isinstance(promote, str):
            promote = [promote]
        if not isinstance(promote, list):
            raise JobInputError(f"Job {context.job_id!r}: promote must be a list of tags")

        client = context.toolbox.registry_client(registry)
        if context.credential is not None:
            session = client.authenticate(
                registry, context.credential, cancel_event=context.cancel_event
            )
        else:
            session = Session(registry=registry)

        published = client.push(
            session, artifact, repository, tag, cancel_event=context.cancel_event
        )
        promoted = [
            client.promote(
                session, repository, published.digest, extra, cancel_event=context.cancel_event
            ).tag
            for extra in promote
        ]
        return {
            "reference": published.as_artifact().model_dump(mode="json"),
            "digest": published.digest,
            "image": published.image,
            "pushed": published.pushed,
            "promoted": promoted,
        }
