"""Registry backends: where pushed artifacts actually live.

``RegistryBackend`` is the wire boundary the client relies on.  Backends
report failures as ``AuthError``/``PushError``/``PullError``; retrying is
the client's job, never the backend's.

``DockerRegistryBackend`` talks to a real registry through the container
tool.  ``DirectoryRegistryBackend`` is a filesystem registry for dry runs
and tests:

    {root}/{registry}/{repository}/blobs/sha256/{hex[0:2]}/{hex[2:4]}/{hex}.json
    {root}/{registry}/{repository}/tags.json

Blobs are content-addressed and never overwritten; ``tags.json`` is the only
mutable file.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

from harborline.core.hasher import canonical_json_bytes, split_digest
from harborline.errors import AuthError, PullError, PushError
from harborline.models.artifacts import ArtifactReference, Credential
from harborline.runtime.docker_cli import CommandResult, DockerCli

logger = logging.getLogger(__name__)


@runtime_checkable
class RegistryBackend(Protocol):
    """Protocol for registry storage backends."""

    def login(self, registry: str, credential: Credential,
              cancel_event: threading.Event | None = None) -> None:
        ...

    def find(self, registry: str, repository: str, artifact: ArtifactReference,
             cancel_event: threading.Event | None = None) -> str | None:
        """Registry digest of *artifact* if already present, else None."""
        ...

    def upload(self, registry: str, repository: str, tag: str, artifact: ArtifactReference,
               cancel_event: threading.Event | None = None) -> str:
        """Upload *artifact* as ``repository:tag`` and return its digest."""
        ...

    def set_tag(self, registry: str, repository: str, tag: str, digest: str,
                cancel_event: threading.Event | None = None) -> None:
        ...

    def resolve(self, registry: str, repository: str, tag: str,
                cancel_event: threading.Event | None = None) -> str:
        ...

    def download(self, registry: str, repository: str, digest: str,
                 cancel_event: threading.Event | None = None) -> None:
        ...


# ---------------------------------------------------------------------------
# Docker
# ---------------------------------------------------------------------------


class DockerRegistryBackend:
    """Registry access through ``docker login/tag/push/pull``."""

    def __init__(self, docker: DockerCli | None = None) -> None:
        self.docker = docker or DockerCli()

    @staticmethod
    def _failure(cls: type, message: str, registry: str, result: CommandResult):
        return cls(
            f"{message}: exit {result.returncode}",
            registry=registry,
            exit_code=result.returncode,
            log_tail=result.tail(20),
        )

    def _registry_digest(self, ref: str, registry: str, repository: str,
                         cancel_event: threading.Event | None) -> str | None:
        result = self.docker.repo_digests(ref, cancel_event=cancel_event)
        if not result.ok:
            return None
        prefix = f"{registry}/{repository}@"
        for line in result.output.splitlines():
            if line.strip().startswith(prefix):
                return line.strip()[len(prefix):]
        return None

    def login(self, registry: str, credential: Credential,
              cancel_event: threading.Event | None = None) -> None:
        result = self.docker.login(
            registry,
            credential.username,
            credential.secret.get_secret_value(),
            cancel_event=cancel_event,
        )
        if not result.ok:
            raise self._failure(AuthError, f"Login to {registry} failed", registry, result)

    def find(self, registry: str, repository: str, artifact: ArtifactReference,
             cancel_event: threading.Event | None = None) -> str | None:
        digest = self._registry_digest(artifact.digest, registry, repository, cancel_event)
        if digest is None:
            return None
        present = self.docker.manifest_exists(
            f"{registry}/{repository}@{digest}", cancel_event=cancel_event
        )
        return digest if present.ok else None

    def upload(self, registry: str, repository: str, tag: str, artifact: ArtifactReference,
               cancel_event: threading.Event | None = None) -> str:
        target = f"{registry}/{repository}:{tag}"
        tagged = self.docker.tag(artifact.digest, target, cancel_event=cancel_event)
        if not tagged.ok:
            # The image is not in the local store; retrying cannot help.
            raise PushError(
                f"Tagging {artifact.digest} as {target} failed: exit {tagged.returncode}",
                registry=registry,
                transient=False,
                exit_code=tagged.returncode,
                log_tail=tagged.tail(20),
            )
        pushed = self.docker.push(target, cancel_event=cancel_event)
        if not pushed.ok:
            raise self._failure(PushError, f"Push of {target} failed", registry, pushed)
        digest = self._registry_digest(target, registry, repository, cancel_event)
        if digest is None:
            raise PushError(f"Pushed {target} but the registry digest is unknown", registry=registry)
        return digest

    def set_tag(self, registry: str, repository: str, tag: str, digest: str,
                cancel_event: threading.Event | None = None) -> None:
        pinned = f"{registry}/{repository}@{digest}"
        target = f"{registry}/{repository}:{tag}"
        pulled = self.docker.pull(pinned, cancel_event=cancel_event)
        if not pulled.ok:
            raise self._failure(PushError, f"Fetching {pinned} for promotion failed", registry, pulled)
        tagged = self.docker.tag(pinned, target, cancel_event=cancel_event)
        if not tagged.ok:
            raise self._failure(PushError, f"Tagging {pinned} as {target} failed", registry, tagged)
        pushed = self.docker.push(target, cancel_event=cancel_event)
        if not pushed.ok:
            raise self._failure(PushError, f"Push of {target} failed", registry, pushed)

    def resolve(self, registry: str, repository: str, tag: str,
                cancel_event: threading.Event | None = None) -> str:
        ref = f"{registry}/{repository}:{tag}"
        pulled = self.docker.pull(ref, cancel_event=cancel_event)
        if not pulled.ok:
            raise self._failure(PullError, f"Pull of {ref} failed", registry, pulled)
        digest = self._registry_digest(ref, registry, repository, cancel_event)
        if digest is None:
            raise PullError(f"Pulled {ref} but its digest is unknown", registry=registry)
        return digest

    def download(self, registry: str, repository: str, digest: str,
                 cancel_event: threading.Event | None = None) -> None:
        ref = f"{registry}/{repository}@{digest}"
        pulled = self.docker.pull(ref, cancel_event=cancel_event)
        if not pulled.ok:
            raise self._failure(PullError, f"Pull of {ref} failed", registry, pulled)


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------


class DirectoryRegistryBackend:
    """Filesystem registry rooted at *root*.

    Login only checks that a username is present; the directory itself has
    no access control.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _repo_dir(self, registry: str, repository: str) -> Path:
        return self._root / registry.replace(":", "_") / repository

    def _blob_path(self, registry: str, repository: str, digest: str) -> Path:
        algorithm, hex_part = split_digest(digest)
        return (
            self._repo_dir(registry, repository)
            / "blobs" / algorithm / hex_part[:2] / hex_part[2:4] / f"{hex_part}.json"
        )

    def _read_tags(self, registry: str, repository: str) -> dict[str, str]:
        path = self._repo_dir(registry, repository) / "tags.json"
        if not path.exists():
            return {}
        return json.loads(path.read_text(encoding="utf-8"))

    def login(self, registry: str, credential: Credential,
              cancel_event: threading.Event | None = None) -> None:
        if not credential.username:
            raise AuthError(f"No username for {registry}", registry=registry, transient=False)

    def find(self, registry: str, repository: str, artifact: ArtifactReference,
             cancel_event: threading.Event | None = None) -> str | None:
        if self._blob_path(registry, repository, artifact.digest).exists():
            return artifact.digest
        return None

    def upload(self, registry: str, repository: str, tag: str, artifact: ArtifactReference,
               cancel_event: threading.Event | None = None) -> str:
        path = self._blob_path(registry, repository, artifact.digest)
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(
                canonical_json_bytes({"name": artifact.name, "digest": artifact.digest})
            )
        self.set_tag(registry, repository, tag, artifact.digest)
        return artifact.digest

    def set_tag(self, registry: str, repository: str, tag: str, digest: str,
                cancel_event: threading.Event | None = None) -> None:
        if not self._blob_path(registry, repository, digest).exists():
            raise PushError(
                f"Cannot tag {repository}:{tag}: {digest} is not in the registry",
                registry=registry,
                transient=False,
            )
        with self._lock:
            tags = self._read_tags(registry, repository)
            tags[tag] = digest
            path = self._repo_dir(registry, repository) / "tags.json"
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(json.dumps(tags, sort_keys=True, indent=2), encoding="utf-8")
            os.replace(tmp, path)

    def resolve(self, registry: str, repository: str, tag: str,
                cancel_event: threading.Event | None = None) -> str:
        digest = self._read_tags(registry, repository).get(tag)
        if digest is None:
            raise PullError(f"Unknown tag {repository}:{tag}", registry=registry, transient=False)
        return digest

    def download(self, registry: str, repository: str, digest: str,
                 cancel_event: threading.Event | None = None) -> None:
        if not self._blob_path(registry, repository, digest).exists():
            raise PullError(
                f"Unknown digest {repository}@{digest}", registry=registry, transient=False
            )
