"""Job state machine models: deterministic transitions."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class JobState(str, Enum):
    """Strict state model for each pipeline job."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATES: frozenset[JobState] = frozenset(
    {JobState.SUCCEEDED, JobState.FAILED, JobState.SKIPPED}
)

# Valid state transitions, enforced structurally by JobMachine.
# Jobs are never retried by the orchestrator, so terminal states are final.
VALID_TRANSITIONS: dict[JobState, set[JobState]] = {
    JobState.PENDING: {JobState.RUNNING, JobState.SKIPPED},
    JobState.RUNNING: {JobState.SUCCEEDED, JobState.FAILED},
    JobState.SUCCEEDED: set(),
    JobState.FAILED: set(),
    JobState.SKIPPED: set(),
}


class JobDefinition(BaseModel):
    """One node of the pipeline DAG.

    ``needs`` encodes the edges: a job cannot enter RUNNING unless every
    job it needs has SUCCEEDED.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    job_id: str = Field(alias="id", min_length=1)
    uses: str
    needs: list[str] = []
    with_: dict = Field(default_factory=dict, alias="with")
    display_name: str = ""

    @property
    def title(self) -> str:
        return self.display_name or self.job_id


class JobTransition(BaseModel):
    """Records a single state transition for the audit trail."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    from_state: JobState
    to_state: JobState
    reason: str | None = None  # populated when entering SKIPPED
    upstream_ref: str | None = None  # job_id that caused the skip
