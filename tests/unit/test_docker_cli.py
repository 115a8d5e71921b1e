"""Tests for the container tool seam: SubprocessRunner and DockerCli."""

from __future__ import annotations

import sys
import threading

import pytest

from harborline.errors import CancelledError
from harborline.models.deployment import PortMapping
from harborline.runtime.docker_cli import CommandResult, CommandRunner, DockerCli, SubprocessRunner


class TestCommandResult:
    def test_ok_and_tail(self):
        result = CommandResult(args=["x"], returncode=0, output="a\nb\nc\n")
        assert result.ok
        assert result.tail(2) == ["b", "c"]
        assert result.stdout_line == "a"

    def test_timed_out_is_not_ok(self):
        assert not CommandResult(args=["x"], returncode=0, timed_out=True).ok


class TestSubprocessRunner:
    def test_captures_output_and_status(self):
        result = SubprocessRunner().run(
            [sys.executable, "-c", "import sys; print('hello'); sys.exit(3)"], timeout=30
        )
        assert result.returncode == 3
        assert "hello" in result.output

    def test_passes_stdin(self):
        result = SubprocessRunner().run(
            [sys.executable, "-c", "import sys; print(sys.stdin.read().upper())"],
            input="secret",
            timeout=30,
        )
        assert result.stdout_line == "SECRET"

    def test_missing_binary_is_127(self):
        result = SubprocessRunner().run(["definitely-not-a-real-binary-xyz"])
        assert result.returncode == 127

    def test_timeout_kills(self):
        result = SubprocessRunner().run(
            [sys.executable, "-c", "import time; time.sleep(30)"], timeout=0.5
        )
        assert result.timed_out
        assert not result.ok

    def test_cancellation_terminates(self):
        cancel = threading.Event()
        threading.Timer(0.3, cancel.set).start()
        with pytest.raises(CancelledError):
            SubprocessRunner().run(
                [sys.executable, "-c", "import time; time.sleep(30)"],
                timeout=30,
                cancel_event=cancel,
            )

    def test_satisfies_protocol(self):
        assert isinstance(SubprocessRunner(), CommandRunner)


class TestDockerCli:
    def test_host_is_prepended(self, fake_docker):
        DockerCli(fake_docker, host="ssh://deploy@web1").list_running()
        assert fake_docker.calls[0][:3] == ["docker", "--host", "ssh://deploy@web1"]

    def test_build_arguments(self, fake_docker):
        DockerCli(fake_docker).build(
            "/ctx", "/ctx/Dockerfile", "site:1",
            build_args={"B": "2", "A": "1"}, labels={"team": "web"},
        )
        assert fake_docker.calls[0] == [
            "docker", "build", "--file", "/ctx/Dockerfile", "--tag", "site:1",
            "--build-arg", "A=1", "--build-arg", "B=2", "--label", "team=web", "/ctx",
        ]

    def test_login_secret_on_stdin_only(self, fake_docker):
        DockerCli(fake_docker).login("registry.example.com", "bot", "s3cret")
        assert "s3cret" not in fake_docker.calls[0]
        assert fake_docker.inputs[0] == "s3cret"

    def test_run_publishes_ports(self, fake_docker):
        DockerCli(fake_docker).run_detached(
            "site@sha256:abc", "web", [PortMapping.parse("8080:80"), PortMapping.parse("53:53/udp")]
        )
        assert fake_docker.calls[0] == [
            "docker", "run", "--detach", "--name", "web",
            "--publish", "8080:80/tcp", "--publish", "53:53/udp", "site@sha256:abc",
        ]
