"""Registry access."""

from harborline.registry.backends import (
    DirectoryRegistryBackend,
    DockerRegistryBackend,
    RegistryBackend,
)
from harborline.registry.client import RegistryClient, parse_image_ref

__all__ = [
    "DirectoryRegistryBackend",
    "DockerRegistryBackend",
    "RegistryBackend",
    "RegistryClient",
    "parse_image_ref",
]
