"""ArtifactBuilder: turns a BuildContext into a content-addressed image.

The build itself is delegated to the container tool.  Its log is captured
for diagnostics only; success is decided by exit status.  Build failures are
deterministic for a given context, so nothing here retries.
"""

from __future__ import annotations

import logging
import threading

from harborline.errors import BuildError
from harborline.models.artifacts import ArtifactReference, BuildContext
from harborline.runtime.docker_cli import DockerCli

logger = logging.getLogger(__name__)


class ArtifactBuilder:
    """Builds images through a ``DockerCli``.

    Parameters
    ----------
    docker:
        Container tool facade.  A local ``DockerCli`` is created if omitted.
    log_tail_lines:
        How many trailing log lines a ``BuildError`` keeps.
    """

    def __init__(self, docker: DockerCli | None = None, *, log_tail_lines: int = 40) -> None:
        self.docker = docker or DockerCli()
        self.log_tail_lines = log_tail_lines

    def build(
        self,
        context: BuildContext,
        name: str,
        tag: str = "latest",
        *,
        cancel_event: threading.Event | None = None,
    ) -> ArtifactReference:
        """Build *context* as ``name:tag`` and return its digest reference."""
        self._validate_context(context)
        alias = f"{name}:{tag}"
        logger.info("Building %s from %s", alias, context.root)

        result = self.docker.build(
            str(context.root),
            str(context.recipe_path),
            alias,
            build_args=context.build_args,
            labels=context.labels,
            cancel_event=cancel_event,
        )
        if not result.ok:
            reason = "timed out" if result.timed_out else f"exited with {result.returncode}"
            raise BuildError(
                f"Build of {alias} {reason}",
                stage="build",
                exit_code=result.returncode,
                log_tail=result.tail(self.log_tail_lines),
            )

        inspected = self.docker.image_id(alias, cancel_event=cancel_event)
        digest = inspected.stdout_line
        if not inspected.ok or ":" not in digest:
            raise BuildError(
                f"Built {alias} but could not read its digest",
                stage="inspect",
                exit_code=inspected.returncode,
                log_tail=inspected.tail(self.log_tail_lines),
            )

        reference = ArtifactReference(name=name, tag=tag, digest=digest)
        logger.info("Built %s -> %s (%.1fs)", alias, digest, result.duration)
        return reference

    @staticmethod
    def _validate_context(context: BuildContext) -> None:
        if not context.root.is_dir():
            raise BuildError(
                f"Build context {context.root} is not a directory", stage="context"
            )
        if not context.recipe_path.is_file():
            raise BuildError(
                f"Build recipe {context.recipe_path} does not exist", stage="context"
            )
