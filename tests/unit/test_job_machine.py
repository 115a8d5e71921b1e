"""Tests for the JobMachine: transitions, gating, cascade, ledger."""

from __future__ import annotations

import threading

import pytest

from harborline.core.job_graph import JobGraph
from harborline.core.job_machine import (
    InvalidTransitionError,
    JobMachine,
    PrerequisiteNotMetError,
)
from harborline.models.jobs import JobState


class TestJobMachine:
    def test_initialize_run(self, machine: JobMachine, run_id: str):
        states = machine.initialize_run(run_id)
        assert set(states.values()) == {JobState.PENDING}
        assert len(states) == 5

    def test_valid_lifecycle(self, machine: JobMachine, run_id: str):
        machine.initialize_run(run_id)
        machine.transition(run_id, "a", JobState.RUNNING)
        machine.transition(run_id, "a", JobState.SUCCEEDED)
        assert machine.get_current_state(run_id, "a") == JobState.SUCCEEDED
        started, finished = machine.get_timestamps(run_id, "a")
        assert started is not None and finished is not None
        assert started <= finished

    def test_invalid_transition_raises(self, machine: JobMachine, run_id: str):
        machine.initialize_run(run_id)
        with pytest.raises(InvalidTransitionError):
            machine.transition(run_id, "a", JobState.SUCCEEDED)

    def test_terminal_states_are_final(self, machine: JobMachine, run_id: str):
        machine.initialize_run(run_id)
        machine.transition(run_id, "a", JobState.RUNNING)
        machine.transition(run_id, "a", JobState.SUCCEEDED)
        with pytest.raises(InvalidTransitionError):
            machine.transition(run_id, "a", JobState.RUNNING)

    def test_prerequisites_enforced(self, machine: JobMachine, run_id: str):
        machine.initialize_run(run_id)
        with pytest.raises(PrerequisiteNotMetError, match="a"):
            machine.transition(run_id, "b", JobState.RUNNING)

    def test_failure_cascades_to_dependents_only(self, machine: JobMachine, run_id: str):
        machine.initialize_run(run_id)
        machine.transition(run_id, "a", JobState.RUNNING)
        skipped = machine.transition(run_id, "a", JobState.FAILED, detail={"error": "boom"})
        assert set(skipped) == {"b", "c", "d"}
        states = machine.get_all_states(run_id)
        assert states["e"] == JobState.PENDING
        for jid in ("b", "c", "d"):
            assert states[jid] == JobState.SKIPPED

    def test_skip_reason_recorded(self, machine: JobMachine, run_id: str):
        machine.initialize_run(run_id)
        machine.transition(run_id, "a", JobState.RUNNING)
        machine.transition(run_id, "a", JobState.FAILED)
        skipped = [t for t in machine.get_history(run_id) if t.to_state == JobState.SKIPPED]
        assert {t.upstream_ref for t in skipped} == {"a"}
        assert all(t.reason == "upstream job a failed" for t in skipped)

    def test_skip_only_pending(self, machine: JobMachine, run_id: str):
        machine.initialize_run(run_id)
        machine.transition(run_id, "e", JobState.RUNNING)
        assert machine.skip(run_id, "e", "cancelled") is False
        assert machine.skip(run_id, "a", "cancelled") is True
        assert machine.get_current_state(run_id, "a") == JobState.SKIPPED

    def test_can_start(self, machine: JobMachine, run_id: str):
        machine.initialize_run(run_id)
        assert machine.can_start(run_id, "a") == (True, [])
        ok, reasons = machine.can_start(run_id, "d")
        assert ok is False
        assert len(reasons) == 2

    def test_transitions_recorded_in_ledger(self, machine: JobMachine, ledger, run_id: str):
        machine.initialize_run(run_id)
        machine.transition(run_id, "a", JobState.RUNNING)
        machine.transition(run_id, "a", JobState.FAILED)
        entries = ledger.get_run_entries(run_id)
        assert [e.state_transition for e in entries[:2]] == ["pending->running", "running->failed"]
        assert len(entries) == 5  # plus three cascade skips
        assert ledger.verify_chain(run_id)

    def test_at_most_one_running_instance(self, make_job, run_id: str):
        machine = JobMachine(JobGraph([make_job("solo")]))
        machine.initialize_run(run_id)
        wins: list[str] = []
        losses: list[Exception] = []
        barrier = threading.Barrier(8)

        def _start(worker: int) -> None:
            barrier.wait()
            try:
                machine.transition(run_id, "solo", JobState.RUNNING)
                wins.append(f"w{worker}")
            except InvalidTransitionError as exc:
                losses.append(exc)

        threads = [threading.Thread(target=_start, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(wins) == 1
        assert len(losses) == 7
