"""Artifact building."""

from harborline.build.builder import ArtifactBuilder

__all__ = ["ArtifactBuilder"]
