"""Deterministic job state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- Dependencies checked before RUNNING
- At most one RUNNING instance per job id
- Cascade skipping on failure
- Every transition recorded in the Run Ledger, with timestamps
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any

from harborline.core.job_graph import JobGraph
from harborline.core.run_ledger import RunLedger
from harborline.models.jobs import VALID_TRANSITIONS, JobState, JobTransition
from harborline.models.ledger import LedgerEntry

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class PrerequisiteNotMetError(RuntimeError):
    """Raised when a job cannot run because its dependencies have not succeeded."""


class JobMachine:
    """Enforces the job state machine with dependency checking.

    Transitions are atomic: the check and the update happen under one lock,
    so two workers can never both move the same job to RUNNING.

    Parameters
    ----------
    graph:
        The job graph for dependency checking.
    ledger:
        Optional Run Ledger to record transitions into.
    """

    def __init__(self, graph: JobGraph, ledger: RunLedger | None = None) -> None:
        self._graph = graph
        self._ledger = ledger
        self._lock = threading.RLock()
        # run_id -> {job_id -> JobState}
        self._states: dict[str, dict[str, JobState]] = {}
        # run_id -> {job_id -> (started_at, finished_at)}
        self._started: dict[str, dict[str, datetime]] = {}
        self._finished: dict[str, dict[str, datetime]] = {}
        self._history: dict[str, list[JobTransition]] = {}

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def initialize_run(self, run_id: str) -> dict[str, JobState]:
        """Initialize all jobs to PENDING for a new run."""
        with self._lock:
            states = {jid: JobState.PENDING for jid in self._graph.job_ids}
            self._states[run_id] = states
            self._started[run_id] = {}
            self._finished[run_id] = {}
            self._history[run_id] = []
            return dict(states)

    def get_current_state(self, run_id: str, job_id: str) -> JobState:
        with self._lock:
            return self._states[run_id].get(job_id, JobState.PENDING)

    def get_all_states(self, run_id: str) -> dict[str, JobState]:
        """Return a snapshot of all job states for a run."""
        with self._lock:
            return dict(self._states[run_id])

    def get_timestamps(self, run_id: str, job_id: str) -> tuple[datetime | None, datetime | None]:
        """Return ``(started_at, finished_at)`` for a job."""
        with self._lock:
            return (
                self._started[run_id].get(job_id),
                self._finished[run_id].get(job_id),
            )

    def get_history(self, run_id: str) -> list[JobTransition]:
        with self._lock:
            return list(self._history[run_id])

    # ------------------------------------------------------------------
    # Transition logic
    # ------------------------------------------------------------------

    def transition(
        self,
        run_id: str,
        job_id: str,
        target_state: JobState,
        *,
        detail: dict[str, Any] | None = None,
    ) -> list[str]:
        """Transition a job to a new state, recording it in the ledger.

        Validates:
        1. The transition is allowed by VALID_TRANSITIONS.
        2. If target is RUNNING, every dependency has SUCCEEDED.
        3. If the transition is to FAILED, cascade-skip dependents.

        Returns the job ids skipped as a consequence (empty unless FAILED).
        """
        with self._lock:
            states = self._states[run_id]
            current = states.get(job_id, JobState.PENDING)

            allowed = VALID_TRANSITIONS.get(current, set())
            if target_state not in allowed:
                raise InvalidTransitionError(
                    f"Cannot transition {job_id} from {current.value} to {target_state.value}. "
                    f"Allowed: {sorted(s.value for s in allowed)}"
                )

            if target_state == JobState.RUNNING and not self._graph.are_needs_met(job_id, states):
                reasons = self._graph.get_blocking_reasons(job_id, states)
                raise PrerequisiteNotMetError(
                    f"Cannot start {job_id}: dependencies not met. "
                    f"Blocked by: {'; '.join(reasons)}"
                )

            self._apply(run_id, job_id, current, target_state, detail or {})

            skipped: list[str] = []
            if target_state == JobState.FAILED:
                skipped = self._graph.cascade_skip(job_id, states)
                for skipped_id in skipped:
                    self._apply(
                        run_id,
                        skipped_id,
                        JobState.PENDING,
                        JobState.SKIPPED,
                        {"reason": f"upstream job {job_id} failed"},
                        upstream_ref=job_id,
                    )
            return skipped

    def skip(self, run_id: str, job_id: str, reason: str) -> bool:
        """Skip a PENDING job.  Returns False if it already left PENDING."""
        with self._lock:
            current = self._states[run_id].get(job_id, JobState.PENDING)
            if current != JobState.PENDING:
                return False
            self._apply(run_id, job_id, current, JobState.SKIPPED, {"reason": reason})
            return True

    def _apply(
        self,
        run_id: str,
        job_id: str,
        current: JobState,
        target_state: JobState,
        detail: dict[str, Any],
        *,
        upstream_ref: str | None = None,
    ) -> None:
        entry = LedgerEntry(
            run_id=run_id,
            job_id=job_id,
            state_transition=f"{current.value}->{target_state.value}",
            detail=detail,
        )
        if self._ledger is not None:
            entry = self._ledger.append(entry)

        self._states[run_id][job_id] = target_state
        if target_state == JobState.RUNNING:
            self._started[run_id][job_id] = entry.timestamp_utc
        else:
            self._finished[run_id][job_id] = entry.timestamp_utc
        self._history[run_id].append(
            JobTransition(
                job_id=job_id,
                from_state=current,
                to_state=target_state,
                reason=detail.get("reason"),
                upstream_ref=upstream_ref,
            )
        )
        logger.debug("%s %s: %s -> %s", run_id, job_id, current.value, target_state.value)

    # ------------------------------------------------------------------
    # Convenience methods
    # ------------------------------------------------------------------

    def can_start(self, run_id: str, job_id: str) -> tuple[bool, list[str]]:
        """Check if a job can transition to RUNNING.

        Returns (can_start, blocking_reasons).
        """
        with self._lock:
            states = self._states[run_id]
            current = states.get(job_id, JobState.PENDING)
            if current != JobState.PENDING:
                return False, [f"Job is currently {current.value}, not pending"]
            if not self._graph.are_needs_met(job_id, states):
                return False, self._graph.get_blocking_reasons(job_id, states)
            return True, []
