"""Run Ledger entry model: append-only, hash-chained.

One entry per job state transition.  The ``running`` and terminal entries of
a job are its start and end timestamps.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntry(BaseModel):
    """A single entry in the append-only Run Ledger."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    job_id: str
    state_transition: str  # "from_state->to_state", e.g. "pending->running"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    detail: dict[str, Any] = {}  # error text, artifact digests, skip reason
    previous_entry_hash: str = ""  # SHA-256 of previous entry's canonical bytes
    entry_hash: str = ""  # computed after construction, seals this entry

    @property
    def to_state(self) -> str:
        return self.state_transition.split("->", 1)[-1]
