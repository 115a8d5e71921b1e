"""Shared test fixtures for Harborline.

Nothing here talks to a real daemon or network: ``FakeDocker`` stands in
for the container tool behind the ``CommandRunner`` seam, and
``FakeSession`` stands in for ``requests.Session``.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import pytest

from harborline.config import HarborlineSettings
from harborline.core.job_graph import JobGraph
from harborline.core.job_machine import JobMachine
from harborline.core.run_ledger import RunLedger
from harborline.jobs import Toolbox
from harborline.models.jobs import JobDefinition
from harborline.probe.verification import VerificationProbe
from harborline.runtime.docker_cli import CommandResult, DockerCli

# ---------------------------------------------------------------------------
# Fake container tool
# ---------------------------------------------------------------------------


class FakeDocker:
    """In-memory ``docker`` that implements the CommandRunner protocol.

    Local images map refs to image ids; the remote registry maps
    ``registry/repo`` to ``{tag: digest}``.  Registry digests equal image
    ids, which keeps assertions readable.  Containers are tracked per
    daemon host (``None`` for the local daemon).
    """

    def __init__(self, build_digest: str = "sha256:abc123") -> None:
        self.build_digest = build_digest
        self.calls: list[list[str]] = []
        self.inputs: list[str | None] = []
        self.images: dict[str, str] = {}
        self.remote: dict[str, dict[str, str]] = {}
        self.containers: dict[str | None, dict[str, tuple[str, str]]] = {}
        self.build_output = "Step 1/2 : FROM nginx:alpine\nStep 2/2 : COPY index.html /srv\n"
        self.fail_build = False
        self.push_failures = 0  # next N pushes fail transiently
        self.run_failures = 0
        self.rm_failures: set[str] = set()  # container names whose rm fails
        self.on_call: Callable[[list[str]], None] | None = None
        self._lock = threading.Lock()
        self._next_container = 0

    # -- CommandRunner ---------------------------------------------------

    def run(
        self,
        args: Sequence[str],
        *,
        input: str | None = None,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> CommandResult:
        argv = list(args)
        with self._lock:
            self.calls.append(argv)
            self.inputs.append(input)
        if self.on_call is not None:
            self.on_call(argv)
        host = None
        rest = argv[1:]
        if rest[:1] == ["--host"]:
            host, rest = rest[1], rest[2:]
        with self._lock:
            returncode, output = self._dispatch(host, rest)
        return CommandResult(args=argv, returncode=returncode, output=output)

    # -- helpers ---------------------------------------------------------

    def commands(self, verb: str) -> list[list[str]]:
        """Calls whose docker verb is *verb* (``--host`` stripped)."""
        found = []
        for argv in self.calls:
            rest = argv[3:] if argv[1:2] == ["--host"] else argv[1:]
            if rest[:1] == [verb]:
                found.append(rest)
        return found

    def running(self, host: str | None = None) -> dict[str, tuple[str, str]]:
        return dict(self.containers.get(host, {}))

    def start_container(self, name: str, image: str, host: str | None = None) -> None:
        self.containers.setdefault(host, {})[name] = (f"seed-{name}", image)

    def _image_id(self, ref: str) -> str | None:
        if ref in self.images:
            return self.images[ref]
        if ref in self.images.values():
            return ref
        repo, sep, digest = ref.partition("@")
        if sep and digest in self.remote.get(repo, {}).values():
            return digest
        return None

    def _remote_lookup(self, ref: str) -> str | None:
        repo, sep, digest = ref.partition("@")
        if sep:
            return digest if digest in self.remote.get(repo, {}).values() else None
        slash, colon = ref.rfind("/"), ref.rfind(":")
        if colon > slash:
            repo, tag = ref[:colon], ref[colon + 1:]
        else:
            repo, tag = ref, "latest"
        return self.remote.get(repo, {}).get(tag)

    def _dispatch(self, host: str | None, rest: list[str]) -> tuple[int, str]:
        verb = rest[0]
        if verb == "build":
            if self.fail_build:
                return 1, self.build_output + "ERROR: failed to solve: COPY failed\n"
            tag = rest[rest.index("--tag") + 1]
            self.images[tag] = self.build_digest
            return 0, self.build_output + f"Successfully tagged {tag}\n"

        if verb == "image" and rest[1] == "inspect":
            ref = rest[-1]
            image_id = self._image_id(ref)
            if image_id is None:
                return 1, f"Error: No such image: {ref}\n"
            if rest[3] == "{{.Id}}":
                return 0, image_id + "\n"
            digests = sorted(
                f"{repo}@{digest}"
                for repo, tags in self.remote.items()
                for digest in tags.values()
                if digest == image_id
            )
            return 0, "".join(f"{line}\n" for line in dict.fromkeys(digests))

        if verb == "tag":
            image_id = self._image_id(rest[1])
            if image_id is None:
                return 1, f"Error response from daemon: No such image: {rest[1]}\n"
            self.images[rest[2]] = image_id
            return 0, ""

        if verb == "push":
            if self.push_failures > 0:
                self.push_failures -= 1
                return 1, "received unexpected HTTP status: 503 Service Unavailable\n"
            ref = rest[1]
            image_id = self._image_id(ref)
            if image_id is None:
                return 1, f"An image does not exist locally with the tag: {ref}\n"
            slash, colon = ref.rfind("/"), ref.rfind(":")
            repo, tag = (ref[:colon], ref[colon + 1:]) if colon > slash else (ref, "latest")
            self.remote.setdefault(repo, {})[tag] = image_id
            return 0, f"{tag}: digest: {image_id} size: 1570\n"

        if verb == "manifest":
            return (0, "{}\n") if self._remote_lookup(rest[-1]) else (1, "no such manifest\n")

        if verb == "pull":
            ref = rest[1]
            digest = self._remote_lookup(ref) or self._image_id(ref)
            if digest is None:
                return 1, f"Error response from daemon: manifest for {ref} not found\n"
            self.images[ref] = digest
            return 0, f"Status: Image is up to date for {ref}\n"

        if verb == "login":
            return 0, "Login Succeeded\n"

        if verb == "run":
            name = rest[rest.index("--name") + 1]
            image = rest[-1]
            running = self.containers.setdefault(host, {})
            if name in running:
                return 125, (
                    f'docker: Error response from daemon: Conflict. The container name "/{name}" '
                    "is already in use by container \"deadbeef\".\n"
                )
            if self.run_failures > 0:
                self.run_failures -= 1
                return 125, "docker: Error response from daemon: port is already allocated.\n"
            self._next_container += 1
            container_id = f"{self._next_container:012d}cafe"
            running[name] = (container_id, image)
            return 0, container_id + "\n"

        if verb == "ps":
            running = self.containers.get(host, {})
            return 0, "".join(
                f"{name}\t{cid[:12]}\t{image}\n" for name, (cid, image) in running.items()
            )

        if verb == "rm":
            name = rest[-1]
            running = self.containers.get(host, {})
            if name in self.rm_failures:
                return 1, f"Error response from daemon: could not kill {name}: device or resource busy\n"
            if name not in running:
                return 1, f"Error response from daemon: No such container: {name}\n"
            del running[name]
            return 0, name + "\n"

        return 127, f"unknown command {verb}\n"


# ---------------------------------------------------------------------------
# Fake HTTP
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced monotonic clock; ``sleep`` advances it."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeResponse:
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Scripted ``requests.Session`` stand-in.

    *script* items are status codes or exceptions, consumed one per GET;
    the last item repeats.  ``request_cost`` advances *clock* per request.
    """

    def __init__(
        self,
        script: Sequence[int | Exception],
        *,
        clock: FakeClock | None = None,
        request_cost: float = 0.0,
    ) -> None:
        self.script = list(script)
        self.clock = clock
        self.request_cost = request_cost
        self.requests: list[tuple[str, float]] = []

    def get(self, url: str, timeout: float | None = None) -> FakeResponse:
        self.requests.append((url, timeout))
        if self.clock is not None:
            self.clock.now += self.request_cost
        item = self.script[min(len(self.requests) - 1, len(self.script) - 1)]
        if isinstance(item, Exception):
            raise item
        return FakeResponse(item)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def ledger(tmp_dir: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def run_id() -> str:
    """Provide a deterministic test run ID."""
    return "hl-test-run-001"


@pytest.fixture
def fake_docker() -> FakeDocker:
    return FakeDocker()


@pytest.fixture
def docker(fake_docker: FakeDocker) -> DockerCli:
    """A DockerCli wired to the fake."""
    return DockerCli(fake_docker, timeout=5)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> HarborlineSettings:
    """Settings that never wait: zero backoff and a short probe."""
    return HarborlineSettings(
        _env_file=None,
        retry_attempts=3,
        retry_base_delay_seconds=0.0,
        probe_timeout_seconds=10.0,
        probe_interval_seconds=1.0,
        max_workers=4,
    )


@pytest.fixture
def healthy_probe(clock: FakeClock) -> VerificationProbe:
    return VerificationProbe(FakeSession([200], clock=clock), clock=clock, sleep=clock.sleep)


@pytest.fixture
def toolbox(settings: HarborlineSettings, fake_docker: FakeDocker,
            healthy_probe: VerificationProbe) -> Toolbox:
    """A Toolbox whose every component runs against the fakes."""
    return Toolbox(settings, runner=fake_docker, probe=healthy_probe)


@pytest.fixture
def make_job() -> Callable[..., JobDefinition]:
    """Factory fixture: build a JobDefinition with sensible defaults."""

    def _factory(job_id: str, uses: str = "noop", needs: list[str] | None = None,
                 **with_: Any) -> JobDefinition:
        return JobDefinition(id=job_id, uses=uses, needs=needs or [], **{"with": with_})

    return _factory


@pytest.fixture
def diamond(make_job) -> list[JobDefinition]:
    """a -> (b, c) -> d, plus an unrelated e."""
    return [
        make_job("a"),
        make_job("b", needs=["a"]),
        make_job("c", needs=["a"]),
        make_job("d", needs=["b", "c"]),
        make_job("e"),
    ]


@pytest.fixture
def machine(diamond, ledger: RunLedger) -> JobMachine:
    """Provide a JobMachine over the diamond graph, wired to the test ledger."""
    return JobMachine(JobGraph(diamond), ledger)


@pytest.fixture
def make_session() -> Callable[..., FakeSession]:
    """Factory fixture: a scripted HTTP session."""
    return FakeSession


@pytest.fixture
def make_probe(clock: FakeClock) -> Callable[..., tuple[VerificationProbe, FakeSession]]:
    """Factory fixture: a probe on the fake clock plus its scripted session."""

    def _factory(script: Sequence[int | Exception],
                 request_cost: float = 0.0) -> tuple[VerificationProbe, FakeSession]:
        session = FakeSession(script, clock=clock, request_cost=request_cost)
        return VerificationProbe(session, clock=clock, sleep=clock.sleep), session

    return _factory
