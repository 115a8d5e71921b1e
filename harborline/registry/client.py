"""RegistryClient: authenticate, push, promote and pull with bounded retry.

Push is idempotent by digest: if the registry already holds the artifact's
content the push is a no-op that still succeeds (``pushed=False``) and
returns the same digest.  Tags are last-writer-wins aliases; callers that
need determinism push a unique tag and then ``promote()`` the digest to the
shared tag in a single call.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from harborline.core.retry import RetryPolicy, call_with_retry
from harborline.errors import AuthError, PullError
from harborline.models.artifacts import (
    ArtifactReference,
    Credential,
    LocalArtifact,
    PublishedRef,
    Session,
)
from harborline.registry.backends import DockerRegistryBackend, RegistryBackend

logger = logging.getLogger(__name__)


def parse_image_ref(ref: str) -> tuple[str, str | None, str | None]:
    """Split ``repo:tag`` / ``repo@digest`` into ``(repo, tag, digest)``."""
    if "@" in ref:
        repository, digest = ref.split("@", 1)
        return repository, None, digest
    # A colon after the last slash separates the tag; one before it is a port.
    slash = ref.rfind("/")
    colon = ref.rfind(":")
    if colon > slash:
        return ref[:colon], ref[colon + 1:], None
    return ref, "latest", None


class RegistryClient:
    """Registry operations with retry confined to this failure domain.

    Parameters
    ----------
    backend:
        Where artifacts are stored.  Defaults to ``DockerRegistryBackend``.
    policy:
        Retry policy for transient failures (default 3 attempts, base 2s).
    sleep:
        Replaces the backoff wait; used by tests.
    """

    def __init__(
        self,
        backend: RegistryBackend | None = None,
        *,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.backend: RegistryBackend = backend or DockerRegistryBackend()
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    def _retry(self, operation, description: str, cancel_event: threading.Event | None):
        return call_with_retry(
            operation,
            policy=self.policy,
            description=description,
            cancel_event=cancel_event,
            sleep=self._sleep,
        )

    # ------------------------------------------------------------------
    # Authenticate
    # ------------------------------------------------------------------

    def authenticate(
        self,
        host: str,
        credential: Credential,
        *,
        cancel_event: threading.Event | None = None,
    ) -> Session:
        """Log in to *host* with a credential bound to that host."""
        if credential.registry != host:
            raise AuthError(
                f"Credential is bound to {credential.registry!r}, not {host!r}",
                registry=host,
                transient=False,
            )
        self._retry(
            lambda: self.backend.login(host, credential, cancel_event),
            f"login to {host}",
            cancel_event,
        )
        logger.info("Authenticated to %s as %s", host, credential.username)
        return Session(registry=host, username=credential.username)

    # ------------------------------------------------------------------
    # Push / promote
    # ------------------------------------------------------------------

    def push(
        self,
        session: Session,
        artifact: ArtifactReference,
        repository: str | None = None,
        tag: str | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> PublishedRef:
        """Publish *artifact* as ``repository:tag`` on the session's registry."""
        registry = session.registry
        repository = repository or artifact.name
        tag = tag or artifact.tag

        def _push() -> PublishedRef:
            existing = self.backend.find(registry, repository, artifact, cancel_event)
            if existing is not None:
                self.backend.set_tag(registry, repository, tag, existing, cancel_event)
                return PublishedRef(
                    registry=registry, repository=repository, tag=tag,
                    digest=existing, pushed=False,
                )
            digest = self.backend.upload(registry, repository, tag, artifact, cancel_event)
            return PublishedRef(
                registry=registry, repository=repository, tag=tag, digest=digest, pushed=True,
            )

        published = self._retry(_push, f"push of {repository}:{tag} to {registry}", cancel_event)
        if published.pushed:
            logger.info("Pushed %s:%s -> %s", repository, tag, published.digest)
        else:
            logger.info("%s already holds %s; push skipped", registry, published.digest)
        return published

    def promote(
        self,
        session: Session,
        repository: str,
        digest: str,
        tag: str,
        *,
        cancel_event: threading.Event | None = None,
    ) -> PublishedRef:
        """Point ``repository:tag`` at an already-published digest."""
        registry = session.registry
        self._retry(
            lambda: self.backend.set_tag(registry, repository, tag, digest, cancel_event),
            f"promotion of {repository}@{digest} to :{tag}",
            cancel_event,
        )
        logger.info("Promoted %s@%s to :%s", repository, digest, tag)
        return PublishedRef(
            registry=registry, repository=repository, tag=tag, digest=digest, pushed=False,
        )

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    def pull(
        self,
        session: Session,
        ref: str | PublishedRef,
        *,
        cancel_event: threading.Event | None = None,
    ) -> LocalArtifact:
        """Fetch an artifact by ``repo@digest`` or ``repo:tag``.

        Tags are resolved against the registry on every call, never cached.
        """
        registry = session.registry
        if isinstance(ref, PublishedRef):
            repository, tag, digest = ref.repository, ref.tag, ref.digest
        else:
            repository, tag, digest = parse_image_ref(ref)
        if not repository:
            raise PullError(f"Invalid reference {ref!r}", registry=registry, transient=False)

        def _pull() -> str:
            resolved = digest or self.backend.resolve(registry, repository, tag or "latest", cancel_event)
            self.backend.download(registry, repository, resolved, cancel_event)
            return resolved

        resolved = self._retry(_pull, f"pull of {repository} from {registry}", cancel_event)
        logger.info("Pulled %s@%s", repository, resolved)
        return LocalArtifact(
            reference=ArtifactReference(
                name=f"{registry}/{repository}", tag=tag or "", digest=resolved,
            )
        )
