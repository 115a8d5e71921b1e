"""Report models: probe results and the final pipeline report."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from harborline.models.jobs import JobState


class ProbeVerdict(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    TIMEOUT = "timeout"


class ProbeAttempt(BaseModel):
    """One HTTP GET issued by the verification probe."""

    model_config = ConfigDict(frozen=True)

    number: int
    started_at: float  # seconds since the probe started
    elapsed: float  # duration of this request
    status_code: int | None = None
    error: str = ""

    @property
    def healthy(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300


class ProbeResult(BaseModel):
    """Verdict plus the full attempt sequence, for diagnostics."""

    model_config = ConfigDict(frozen=True)

    endpoint: str
    verdict: ProbeVerdict
    attempts: list[ProbeAttempt] = []
    elapsed: float = 0.0

    @property
    def healthy(self) -> bool:
        return self.verdict == ProbeVerdict.HEALTHY

    def summary(self) -> list[str]:
        """One line per attempt, e.g. ``#2 +1.00s 503``."""
        lines = []
        for attempt in self.attempts:
            outcome = str(attempt.status_code) if attempt.status_code is not None else attempt.error
            lines.append(f"#{attempt.number} +{attempt.started_at:.2f}s {outcome}")
        return lines


class PipelineOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobReport(BaseModel):
    """Terminal record of one job."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    uses: str = ""
    state: JobState
    started_at: datetime | None = None
    finished_at: datetime | None = None
    outputs: dict[str, Any] = {}
    error: str = ""
    diagnostics: dict[str, Any] = {}
    skip_reason: str = ""
    torn_down: list[str] = []  # ephemeral instances destroyed when the run ended

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


class PipelineReport(BaseModel):
    """Every job's terminal state plus the overall outcome."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    pipeline: str
    outcome: PipelineOutcome
    jobs: list[JobReport] = []
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    finished_at: datetime | None = None
    teardown_errors: dict[str, str] = {}  # instance -> error, left running

    def job(self, job_id: str) -> JobReport:
        for report in self.jobs:
            if report.job_id == job_id:
                return report
        raise KeyError(job_id)

    @property
    def states(self) -> dict[str, JobState]:
        return {report.job_id: report.state for report in self.jobs}

    @property
    def failed_jobs(self) -> list[JobReport]:
        return [r for r in self.jobs if r.state == JobState.FAILED]
