"""Pipeline orchestrator: the central coordinator for Harborline runs.

The orchestrator wires the JobGraph, JobMachine and RunLedger into a single
execution engine.  Ready jobs run concurrently on a thread pool; a job is
submitted once every job it needs has SUCCEEDED and a worker is free, and
becomes RUNNING only when that worker starts it.  A failure skips its
transitive dependents through the JobMachine and never stops unrelated
branches.  Jobs are not retried here: retry lives inside the registry
client, where transient failures happen.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Mapping
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from harborline.core.job_graph import JobGraph
from harborline.core.job_machine import JobMachine
from harborline.core.run_ledger import RunLedger
from harborline.errors import DefinitionError, HarborlineError
from harborline.jobs import JOB_REGISTRY, BaseJob, JobContext, Toolbox
from harborline.models.artifacts import Credential
from harborline.models.deployment import DeployedInstance
from harborline.models.jobs import JobState
from harborline.models.ledger import LedgerEntry
from harborline.models.pipeline import PipelineDefinition
from harborline.models.reports import JobReport, PipelineOutcome, PipelineReport
from harborline.targets.ephemeral import EphemeralRunnerTarget

logger = logging.getLogger(__name__)


def new_run_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"hl-{ts}-{uuid.uuid4().hex[:3]}"


class PipelineOrchestrator:
    """Runs one pipeline definition.

    Parameters
    ----------
    definition:
        The validated pipeline.  Graph problems raise ``DefinitionError``
        here, before any job runs.
    toolbox:
        Components the jobs drive.  Defaults to a real ``Toolbox``.
    ledger:
        Optional Run Ledger recording every transition.
    credentials:
        Registry host -> Credential.  A job receives the credential of the
        registry named in its ``with`` table, and nothing else.
    job_types:
        ``uses`` -> job class.  Defaults to ``JOB_REGISTRY``.
    workdir:
        Directory relative job paths resolve against.
    """

    def __init__(
        self,
        definition: PipelineDefinition,
        toolbox: Toolbox | None = None,
        *,
        ledger: RunLedger | None = None,
        credentials: Mapping[str, Credential] | None = None,
        job_types: Mapping[str, type[BaseJob]] | None = None,
        max_workers: int | None = None,
        workdir: Path | None = None,
        run_id: str | None = None,
    ) -> None:
        self.definition = definition
        self.toolbox = toolbox or Toolbox()
        self.ledger = ledger
        self._credentials = dict(credentials or {})
        self._job_types = dict(job_types or JOB_REGISTRY)
        self.max_workers = max_workers or self.toolbox.settings.max_workers
        self.workdir = workdir or Path(".")
        self.run_id = run_id or new_run_id()

        unknown = sorted({jd.uses for jd in definition.jobs} - set(self._job_types))
        if unknown:
            raise DefinitionError(
                f"Unknown job type(s) {unknown}", problems=[f"unknown uses {u!r}" for u in unknown]
            )
        self.graph = JobGraph(definition.jobs)
        self.machine = JobMachine(self.graph, ledger)

        self._cancel_event = threading.Event()
        self._outputs: dict[str, dict[str, Any]] = {}
        self._failures: dict[str, tuple[str, dict[str, Any]]] = {}
        self._teardown: list[EphemeralRunnerTarget] = []
        self._teardown_errors: dict[str, str] = {}
        self._torn_down: dict[str, list[str]] = {}

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel_event

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Stop scheduling and signal running jobs' blocking calls.

        Side effects already completed are not rolled back.
        """
        if not self._cancel_event.is_set():
            logger.warning("Run %s cancellation requested", self.run_id)
        self._cancel_event.set()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self) -> PipelineReport:
        """Execute every job to a terminal state and return the report."""
        started_at = datetime.now(timezone.utc)
        self.machine.initialize_run(self.run_id)
        logger.info(
            "Run %s of %s started (%d jobs, %d workers)",
            self.run_id,
            self.definition.name,
            len(self.graph),
            self.max_workers,
        )

        try:
            with ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="harborline-job"
            ) as pool:
                self._schedule(pool)
            self._skip_leftovers()
        finally:
            self._tear_down()

        report = self._build_report(started_at)
        log = logger.info if report.outcome == PipelineOutcome.SUCCEEDED else logger.warning
        log("Run %s finished: %s", self.run_id, report.outcome.value)
        return report

    def _schedule(self, pool: ThreadPoolExecutor) -> None:
        running: dict[Future, str] = {}
        while True:
            if not self.cancelled:
                states = self.machine.get_all_states(self.run_id)
                in_flight = set(running.values())
                ready = [j for j in self.graph.ready_jobs(states) if j not in in_flight]
                for job_id in ready[: self.max_workers - len(running)]:
                    running[self._submit(pool, job_id)] = job_id
            if not running:
                return

            done, _ = wait(running, return_when=FIRST_COMPLETED)
            for future in done:
                self._collect(running.pop(future), future)

    def _submit(self, pool: ThreadPoolExecutor, job_id: str) -> Future:
        definition = self.graph.get_definition(job_id)
        job = self._job_types[definition.uses]()
        context = JobContext(
            run_id=self.run_id,
            job_id=job_id,
            params=definition.with_,
            upstream={
                ancestor: self._outputs[ancestor]
                for ancestor in self.graph.get_ancestors(job_id)
                if ancestor in self._outputs
            },
            toolbox=self.toolbox,
            credential=self._credentials.get(str(definition.with_.get("registry", ""))),
            cancel_event=self._cancel_event,
            teardown=self._teardown,
            teardown_observer=self._record_teardown,
            workdir=self.workdir,
        )
        return pool.submit(self._start, job, context)

    def _start(self, job: BaseJob, context: JobContext) -> dict[str, Any] | None:
        """Worker side: mark the job RUNNING and run it.

        Returns None, leaving the job PENDING, when the run was cancelled
        before a worker picked the job up.
        """
        if context.cancelled:
            return None
        self.machine.transition(
            self.run_id,
            context.job_id,
            JobState.RUNNING,
            detail={"uses": self.graph.get_definition(context.job_id).uses},
        )
        return job.run_job(context)

    def _collect(self, job_id: str, future: Future) -> None:
        try:
            outputs = future.result()
        except HarborlineError as exc:
            diagnostics = exc.diagnostics()
            self._failures[job_id] = (str(exc), diagnostics)
            skipped = self.machine.transition(
                self.run_id,
                job_id,
                JobState.FAILED,
                detail={"error": str(exc), "diagnostics": diagnostics},
            )
            if skipped:
                logger.warning("%s failed; skipping %s", job_id, ", ".join(skipped))
            return

        if outputs is None:
            logger.info("%s not started: run cancelled", job_id)
            return
        self._outputs[job_id] = outputs
        self.machine.transition(
            self.run_id, job_id, JobState.SUCCEEDED, detail={"outputs": outputs}
        )

    def _skip_leftovers(self) -> None:
        reason = "run cancelled" if self.cancelled else "never became eligible"
        for job_id in self.graph.job_ids:
            if self.machine.skip(self.run_id, job_id, reason):
                logger.info("%s skipped: %s", job_id, reason)

    def _record_teardown(self, job_id: str, instances: list[DeployedInstance]) -> None:
        name = self._outputs.get(job_id, {}).get("name")
        ended = [i.name for i in instances if i.name == name]
        if ended:
            logger.info("%s: ephemeral instance(s) %s end with the run", job_id, ", ".join(ended))
            self._torn_down[job_id] = ended

    def _tear_down(self) -> None:
        for target in self._teardown:
            try:
                destroyed = target.teardown()
            except HarborlineError as exc:
                logger.error("Run %s: tearing down %r failed: %s", self.run_id, target, exc)
                self._teardown_errors[target.host] = str(exc)
                continue
            self._teardown_errors.update(target.teardown_errors)
            if destroyed:
                logger.info(
                    "Run %s: ephemeral runner destroyed %s",
                    self.run_id,
                    ", ".join(i.name for i in destroyed),
                )
        if self._teardown_errors:
            logger.error(
                "Run %s: ephemeral instances left running: %s",
                self.run_id,
                ", ".join(sorted(self._teardown_errors)),
            )

    # ------------------------------------------------------------------
    # Report
    # ------------------------------------------------------------------

    def _build_report(self, started_at: datetime) -> PipelineReport:
        states = self.machine.get_all_states(self.run_id)
        skip_reasons = {
            t.job_id: t.reason or ""
            for t in self.machine.get_history(self.run_id)
            if t.to_state == JobState.SKIPPED
        }
        jobs = []
        for job_id in self.graph.job_ids:
            job_started, job_finished = self.machine.get_timestamps(self.run_id, job_id)
            error, diagnostics = self._failures.get(job_id, ("", {}))
            jobs.append(
                JobReport(
                    job_id=job_id,
                    uses=self.graph.get_definition(job_id).uses,
                    state=states[job_id],
                    started_at=job_started,
                    finished_at=job_finished,
                    outputs=self._outputs.get(job_id, {}),
                    error=error,
                    diagnostics=diagnostics,
                    skip_reason=skip_reasons.get(job_id, ""),
                    torn_down=[
                        name for name in self._torn_down.get(job_id, [])
                        if name not in self._teardown_errors
                    ],
                )
            )

        if self.cancelled:
            outcome = PipelineOutcome.CANCELLED
        elif any(s == JobState.FAILED for s in states.values()):
            outcome = PipelineOutcome.FAILED
        else:
            outcome = PipelineOutcome.SUCCEEDED
        return PipelineReport(
            run_id=self.run_id,
            pipeline=self.definition.name,
            outcome=outcome,
            jobs=jobs,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            teardown_errors=dict(self._teardown_errors),
        )

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_states(self) -> dict[str, JobState]:
        """Return current state of all jobs."""
        return self.machine.get_all_states(self.run_id)

    def get_run_entries(self) -> list[LedgerEntry]:
        """Return all ledger entries for this run (empty without a ledger)."""
        if self.ledger is None:
            return []
        return self.ledger.get_run_entries(self.run_id)

    def verify_chain(self) -> bool:
        """Verify the hash chain integrity of this run's ledger."""
        if self.ledger is None:
            return True
        return self.ledger.verify_chain(self.run_id)
