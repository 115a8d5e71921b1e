"""Deployment targets: local daemon, remote host, ephemeral runner."""

from harborline.targets.base import DeploymentTarget, DockerDaemonTarget
from harborline.targets.daemon import LocalDaemonTarget, RemoteHostTarget
from harborline.targets.ephemeral import EphemeralRunnerTarget

__all__ = [
    "DeploymentTarget",
    "DockerDaemonTarget",
    "EphemeralRunnerTarget",
    "LocalDaemonTarget",
    "RemoteHostTarget",
]
