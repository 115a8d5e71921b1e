"""Job DAG with dependency gating and cascade skipping.

The graph enforces:
- No job runs unless all of the jobs it needs have SUCCEEDED.
- When a job fails, every transitive dependent is SKIPPED, and nothing else.
"""

from __future__ import annotations

from collections import deque

from harborline.errors import DefinitionError
from harborline.models.jobs import JobDefinition, JobState


class JobGraph:
    """Directed acyclic graph of job dependencies.

    Built from ``JobDefinition.needs`` before the run starts.  Any structural
    problem (duplicate ids, unknown needs, self-dependency, cycles) raises
    ``DefinitionError`` listing every problem found.
    """

    def __init__(self, job_definitions: list[JobDefinition]) -> None:
        problems: list[str] = []
        self._jobs: dict[str, JobDefinition] = {}
        self._order: dict[str, int] = {}
        for index, jd in enumerate(job_definitions):
            if jd.job_id in self._jobs:
                problems.append(f"duplicate job id {jd.job_id!r}")
                continue
            self._jobs[jd.job_id] = jd
            self._order[jd.job_id] = index

        # Forward edges: job_id -> job_ids it needs
        self._needs: dict[str, list[str]] = {}
        # Reverse edges: job_id -> job_ids that need it
        self._dependents: dict[str, list[str]] = {jid: [] for jid in self._jobs}
        for jid, jd in self._jobs.items():
            needs: list[str] = []
            for need in jd.needs:
                if need == jid:
                    problems.append(f"job {jid!r} needs itself")
                elif need not in self._jobs:
                    problems.append(f"job {jid!r} needs unknown job {need!r}")
                elif need not in needs:
                    needs.append(need)
                    self._dependents[need].append(jid)
            self._needs[jid] = needs

        if not problems:
            cycle = self._find_cycle_members()
            if cycle:
                problems.append(f"dependency cycle among {sorted(cycle)}")

        if problems:
            raise DefinitionError(
                "Invalid job graph: " + "; ".join(problems), problems=problems
            )

    def _find_cycle_members(self) -> set[str]:
        """Kahn's algorithm; returns the jobs that could not be ordered."""
        in_degree = {jid: len(needs) for jid, needs in self._needs.items()}
        queue = deque(jid for jid, deg in in_degree.items() if deg == 0)
        visited: set[str] = set()

        while queue:
            node = queue.popleft()
            visited.add(node)
            for dep in self._dependents[node]:
                in_degree[dep] -= 1
                if in_degree[dep] == 0:
                    queue.append(dep)

        return set(self._jobs) - visited

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_needs(self, job_id: str) -> list[str]:
        """Return direct dependencies of a job."""
        return list(self._needs.get(job_id, []))

    def get_dependents(self, job_id: str) -> list[str]:
        """Return all transitive dependents of a job (BFS order)."""
        result = []
        queue = deque(self._dependents.get(job_id, []))
        visited: set[str] = set()
        while queue:
            node = queue.popleft()
            if node in visited:
                continue
            visited.add(node)
            result.append(node)
            queue.extend(self._dependents.get(node, []))
        return result

    def get_ancestors(self, job_id: str) -> list[str]:
        """Return all transitive dependencies, nearest first (BFS order)."""
        result = []
        queue = deque(self._needs.get(job_id, []))
        visited: set[str] = set()
        while queue:
            node = queue.popleft()
            if node in visited:
                continue
            visited.add(node)
            result.append(node)
            queue.extend(self._needs.get(node, []))
        return result

    def get_definition(self, job_id: str) -> JobDefinition:
        return self._jobs[job_id]

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    @property
    def job_ids(self) -> list[str]:
        """Return all job ids in topological order (ties in definition order)."""
        in_degree = {jid: len(needs) for jid, needs in self._needs.items()}
        queue = deque(
            sorted(
                (jid for jid, deg in in_degree.items() if deg == 0),
                key=self._order.__getitem__,
            )
        )
        result = []
        while queue:
            node = queue.popleft()
            result.append(node)
            for dep in sorted(self._dependents[node], key=self._order.__getitem__):
                in_degree[dep] -= 1
                if in_degree[dep] == 0:
                    queue.append(dep)
        return result

    # ------------------------------------------------------------------
    # Dependency checking
    # ------------------------------------------------------------------

    def are_needs_met(self, job_id: str, states: dict[str, JobState]) -> bool:
        """Check if every dependency of a job has SUCCEEDED."""
        return all(
            states.get(need) == JobState.SUCCEEDED for need in self._needs.get(job_id, [])
        )

    def get_blocking_reasons(self, job_id: str, states: dict[str, JobState]) -> list[str]:
        """Return human-readable reasons why a job cannot start yet."""
        reasons = []
        for need in self._needs.get(job_id, []):
            state = states.get(need, JobState.PENDING)
            if state != JobState.SUCCEEDED:
                reasons.append(f"{self._jobs[need].title} ({need}) is {state.value}")
        return reasons

    def ready_jobs(self, states: dict[str, JobState]) -> list[str]:
        """PENDING jobs whose dependencies have all SUCCEEDED."""
        return [
            jid
            for jid in self.job_ids
            if states.get(jid, JobState.PENDING) == JobState.PENDING
            and self.are_needs_met(jid, states)
        ]

    # ------------------------------------------------------------------
    # Cascade skipping
    # ------------------------------------------------------------------

    def cascade_skip(self, failed_job_id: str, states: dict[str, JobState]) -> list[str]:
        """Return the PENDING transitive dependents a failure must skip.

        A dependent of a failed job can never have started, so this is the
        full transitive closure minus anything already terminal.
        """
        return [
            job_id
            for job_id in self.get_dependents(failed_job_id)
            if states.get(job_id, JobState.PENDING) == JobState.PENDING
        ]
