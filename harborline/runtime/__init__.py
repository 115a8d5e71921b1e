"""Execution of the external container tool (``docker``)."""

from harborline.runtime.docker_cli import (
    CommandResult,
    CommandRunner,
    DockerCli,
    SubprocessRunner,
)

__all__ = ["CommandResult", "CommandRunner", "DockerCli", "SubprocessRunner"]
