"""Rich terminal renderer for pipeline reports, plans, probes and history.

Color scheme
------------
- green     : SUCCEEDED / healthy
- red       : FAILED / unhealthy
- yellow    : RUNNING / timeout / cancelled
- dim       : PENDING / SKIPPED
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from harborline.models.jobs import JobState
from harborline.models.reports import PipelineOutcome, ProbeVerdict

if TYPE_CHECKING:
    from harborline.core.job_graph import JobGraph
    from harborline.models.ledger import LedgerEntry
    from harborline.models.pipeline import PipelineDefinition
    from harborline.models.reports import JobReport, PipelineReport, ProbeResult


# ---------------------------------------------------------------------------
# State -> Rich style mapping
# ---------------------------------------------------------------------------

_STATE_ICONS: dict[JobState, str] = {
    JobState.SUCCEEDED: "[green]SUCCEEDED[/green]",
    JobState.FAILED: "[bold red]FAILED[/bold red]",
    JobState.RUNNING: "[yellow]RUNNING[/yellow]",
    JobState.PENDING: "[dim]PENDING[/dim]",
    JobState.SKIPPED: "[dim]SKIPPED[/dim]",
}

_OUTCOME_STYLES: dict[PipelineOutcome, str] = {
    PipelineOutcome.SUCCEEDED: "green",
    PipelineOutcome.FAILED: "red",
    PipelineOutcome.CANCELLED: "yellow",
}

_VERDICT_STYLES: dict[ProbeVerdict, str] = {
    ProbeVerdict.HEALTHY: "green",
    ProbeVerdict.UNHEALTHY: "red",
    ProbeVerdict.TIMEOUT: "yellow",
}

# Outputs worth a line in the details column, in display order.
_HEADLINE_OUTPUTS = ("digest", "image", "endpoint", "verdict")


class ReportRenderer:
    """Renders Harborline models as Rich renderables.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    diagnostic_lines:
        How many log-tail / probe lines to show per failed job.
    """

    def __init__(self, console: Console | None = None, *, diagnostic_lines: int = 10) -> None:
        self.console = console or Console()
        self.diagnostic_lines = diagnostic_lines

    # ------------------------------------------------------------------
    # Pipeline report
    # ------------------------------------------------------------------

    def render_report(self, report: PipelineReport) -> Panel:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Job", min_width=12)
        table.add_column("Uses", style="dim")
        table.add_column("State", justify="center", min_width=11)
        table.add_column("Duration", justify="right")
        table.add_column("Details", min_width=30)

        for job in report.jobs:
            duration = job.duration_seconds
            table.add_row(
                job.job_id,
                job.uses,
                _STATE_ICONS.get(job.state, job.state.value),
                f"{duration:.1f}s" if duration is not None else "[dim]-[/dim]",
                self._details(job),
            )

        style = _OUTCOME_STYLES[report.outcome]
        parts: list[Table | Text] = [table]
        for job in report.failed_jobs:
            parts.append(Text(""))
            parts.append(self._diagnostics(job))
        if report.teardown_errors:
            parts.append(Text(""))
            parts.append(self._teardown_errors(report.teardown_errors))

        return Panel(
            Group(*parts),
            title=f"[bold]{report.pipeline}[/bold]  [{style}]{report.outcome.value.upper()}[/{style}]",
            subtitle=f"run {report.run_id}",
            border_style=style,
            padding=(1, 2),
        )

    def _details(self, job: JobReport) -> str:
        if job.state == JobState.FAILED:
            return f"[red]{job.error}[/red]"
        if job.state == JobState.SKIPPED:
            return f"[dim]{job.skip_reason}[/dim]"
        shown = [
            f"{key}: {job.outputs[key]}" for key in _HEADLINE_OUTPUTS if job.outputs.get(key)
        ]
        if job.torn_down:
            shown.append(f"torn down: {', '.join(job.torn_down)}")
        return "\n".join(shown) or "[dim]-[/dim]"

    @staticmethod
    def _teardown_errors(errors: dict[str, str]) -> Text:
        text = Text("Ephemeral instances left running", style="bold red")
        for name, error in sorted(errors.items()):
            text.append(f"\n  {name}: {error}", style="red")
        return text

    def _diagnostics(self, job: JobReport) -> Text:
        diagnostics = job.diagnostics
        text = Text(f"{job.job_id}: {diagnostics.get('error_type', 'error')}", style="bold red")
        for key in ("stage", "exit_code", "registry", "target", "verdict", "endpoint", "rollback_error"):
            if diagnostics.get(key) not in (None, ""):
                text.append(f"\n  {key}: {diagnostics[key]}", style="red")
        lines = list(diagnostics.get("log_tail") or diagnostics.get("attempts") or [])
        for line in lines[-self.diagnostic_lines:]:
            text.append(f"\n  | {line}", style="dim")
        return text

    # ------------------------------------------------------------------
    # Plan, probe and history
    # ------------------------------------------------------------------

    def render_plan(self, definition: PipelineDefinition, graph: JobGraph) -> Table:
        """Jobs in topological order with their dependencies."""
        table = Table(
            title=f"{definition.name}: {len(graph)} jobs",
            show_header=True,
            header_style="bold cyan",
        )
        table.add_column("#", style="dim", justify="right")
        table.add_column("Job")
        table.add_column("Uses")
        table.add_column("Needs", style="dim")
        for index, job_id in enumerate(graph.job_ids, start=1):
            jd = graph.get_definition(job_id)
            table.add_row(str(index), jd.title, jd.uses, ", ".join(jd.needs) or "-")
        return table

    def render_probe(self, result: ProbeResult) -> Panel:
        style = _VERDICT_STYLES[result.verdict]
        body = Text("\n".join(result.summary()) or "no attempts")
        return Panel(
            body,
            title=f"{result.endpoint}  [{style}]{result.verdict.value.upper()}[/{style}]",
            subtitle=f"{len(result.attempts)} attempt(s) in {result.elapsed:.1f}s",
            border_style=style,
        )

    def render_history(self, run_id: str, entries: list[LedgerEntry]) -> Table:
        table = Table(title=f"Ledger for run {run_id}", show_header=True, header_style="bold cyan")
        table.add_column("Time (UTC)")
        table.add_column("Job")
        table.add_column("Transition")
        table.add_column("Hash", style="dim")
        for entry in entries:
            table.add_row(
                entry.timestamp_utc.strftime("%H:%M:%S.%f")[:-3],
                entry.job_id,
                entry.state_transition,
                entry.entry_hash[:12],
            )
        return table

    # ------------------------------------------------------------------
    # Standalone print
    # ------------------------------------------------------------------

    def print_report(self, report: PipelineReport) -> None:
        self.console.print(self.render_report(report))

    def print_chain_verification(self, run_id: str, valid: bool) -> None:
        """Print a chain verification result."""
        if valid:
            self.console.print(f"[green]Hash chain for run {run_id} is valid.[/green]")
        else:
            self.console.print(f"[bold red]Hash chain for run {run_id} is BROKEN![/bold red]")
