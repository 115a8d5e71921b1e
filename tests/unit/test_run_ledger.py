"""Tests for the append-only, hash-chained RunLedger."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from harborline.core.run_ledger import LedgerIntegrityError, RunLedger
from harborline.models.ledger import LedgerEntry


def _entry(run_id: str, job_id: str, transition: str = "pending->running", **detail) -> LedgerEntry:
    return LedgerEntry(run_id=run_id, job_id=job_id, state_transition=transition, detail=detail)


class TestRunLedger:
    def test_append_seals_and_chains(self, ledger: RunLedger, run_id: str):
        first = ledger.append(_entry(run_id, "build"))
        second = ledger.append(_entry(run_id, "build", "running->succeeded"))
        assert first.previous_entry_hash == ""
        assert first.entry_hash
        assert second.previous_entry_hash == first.entry_hash

    def test_chains_are_per_run(self, ledger: RunLedger):
        ledger.append(_entry("run-1", "build"))
        other = ledger.append(_entry("run-2", "build"))
        assert other.previous_entry_hash == ""

    def test_queries(self, ledger: RunLedger, run_id: str):
        ledger.append(_entry(run_id, "build"))
        ledger.append(_entry(run_id, "deploy"))
        ledger.append(_entry(run_id, "build", "running->succeeded"))
        assert len(ledger.get_run_entries(run_id)) == 3
        history = ledger.get_job_history(run_id, "build")
        assert [e.to_state for e in history] == ["running", "succeeded"]
        assert ledger.get_all_run_ids() == [run_id]

    def test_detail_round_trips(self, ledger: RunLedger, run_id: str):
        ledger.append(_entry(run_id, "build", digest="sha256:abc123", tail=["a", "b"]))
        stored = ledger.get_run_entries(run_id)[0]
        assert stored.detail == {"digest": "sha256:abc123", "tail": ["a", "b"]}

    def test_non_json_detail_is_stringified(self, ledger: RunLedger, run_id: str):
        ledger.append(_entry(run_id, "build", path=Path("/srv/site")))
        assert ledger.get_run_entries(run_id)[0].detail["path"] == "/srv/site"

    def test_verify_chain_valid(self, ledger: RunLedger, run_id: str):
        for job in ("build", "publish", "deploy"):
            ledger.append(_entry(run_id, job))
        assert ledger.verify_chain(run_id) is True

    def test_empty_run_verifies(self, ledger: RunLedger):
        assert ledger.verify_chain("nothing-here") is True

    def test_persists_across_instances(self, tmp_path: Path, run_id: str):
        RunLedger(tmp_path / "l.db").append(_entry(run_id, "build"))
        assert len(RunLedger(tmp_path / "l.db").get_run_entries(run_id)) == 1


class TestLedgerTamperDetection:
    """Direct SQLite manipulation, as by someone with database access."""

    @pytest.fixture
    def seeded(self, ledger: RunLedger, run_id: str) -> RunLedger:
        for job in ("build", "publish", "deploy", "verify"):
            ledger.append(_entry(run_id, job))
        return ledger

    def _execute(self, ledger: RunLedger, sql: str, *params) -> None:
        conn = sqlite3.connect(str(ledger._db_path))
        conn.execute(sql, params)
        conn.commit()
        conn.close()

    def test_modified_detail_detected(self, seeded: RunLedger, run_id: str):
        self._execute(
            seeded,
            "UPDATE run_ledger SET detail_json = '{\"forged\": true}' WHERE job_id = ?",
            "publish",
        )
        with pytest.raises(LedgerIntegrityError, match="Tampered"):
            seeded.verify_chain(run_id)

    def test_deleted_entry_detected(self, seeded: RunLedger, run_id: str):
        self._execute(seeded, "DELETE FROM run_ledger WHERE job_id = ?", "publish")
        with pytest.raises(LedgerIntegrityError, match="Chain broken"):
            seeded.verify_chain(run_id)
