"""Artifact, registry and credential models.

A digest (``sha256:<hex>``) is the canonical identity of an artifact.
``name:tag`` is only a mutable alias that may be moved to another digest at
any time, so anything that must be reproducible pins by digest.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator


class BuildContext(BaseModel):
    """A build root plus a reference to the recipe inside it.

    Frozen: once handed to the builder the context cannot change.
    """

    model_config = ConfigDict(frozen=True)

    root: Path
    recipe: Path = Path("Dockerfile")
    build_args: dict[str, str] = {}
    labels: dict[str, str] = {}

    @property
    def recipe_path(self) -> Path:
        """Absolute-or-root-relative path of the recipe file."""
        if self.recipe.is_absolute():
            return self.recipe
        return self.root / self.recipe


class ArtifactReference(BaseModel):
    """A built artifact: ``name:tag`` alias plus its content digest."""

    model_config = ConfigDict(frozen=True)

    name: str
    tag: str = "latest"
    digest: str

    @field_validator("digest")
    @classmethod
    def _digest_has_algorithm(cls, value: str) -> str:
        if ":" not in value:
            raise ValueError(f"digest must be '<algorithm>:<hex>', got {value!r}")
        return value

    @property
    def alias(self) -> str:
        """Mutable ``name:tag`` form."""
        return f"{self.name}:{self.tag}"

    @property
    def pinned(self) -> str:
        """Immutable ``name@digest`` form."""
        return f"{self.name}@{self.digest}"


class PublishedRef(BaseModel):
    """Result of a push or a tag promotion."""

    model_config = ConfigDict(frozen=True)

    registry: str
    repository: str
    tag: str
    digest: str
    pushed: bool = True  # False when the digest was already present

    @property
    def image(self) -> str:
        """Fully qualified ``registry/repository@digest``."""
        return f"{self.registry}/{self.repository}@{self.digest}"

    def as_artifact(self) -> ArtifactReference:
        """The published artifact addressed through the registry."""
        return ArtifactReference(
            name=f"{self.registry}/{self.repository}",
            tag=self.tag,
            digest=self.digest,
        )


class LocalArtifact(BaseModel):
    """An artifact present on the puller's side after ``pull()``."""

    model_config = ConfigDict(frozen=True)

    reference: ArtifactReference
    pulled_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class Credential(BaseModel):
    """Registry secret bound to one registry host.

    The secret is a ``SecretStr`` so it is masked in ``repr``, logs and
    serialized reports.  It is handed to jobs explicitly; nothing reads it
    from the environment once the run has started.
    """

    model_config = ConfigDict(frozen=True)

    registry: str
    username: str
    secret: SecretStr

    def __repr__(self) -> str:
        return f"Credential(registry={self.registry!r}, username={self.username!r})"


class Session(BaseModel):
    """Proof of a successful registry login.  Carries no secret."""

    model_config = ConfigDict(frozen=True)

    registry: str
    username: str = ""
    authenticated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
