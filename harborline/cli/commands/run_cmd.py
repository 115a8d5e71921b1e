"""``harborline run DEFINITION``: execute a pipeline definition.

Validates the definition, evaluates its trigger, runs every job and renders
the final report.  Exit codes: 0 succeeded (or not triggered), 1 failed,
2 invalid definition, 130 cancelled.
"""

from __future__ import annotations

import signal
from pathlib import Path

import typer
from rich.console import Console

from harborline.config import HarborlineSettings
from harborline.core.orchestrator import PipelineOrchestrator
from harborline.core.run_ledger import RunLedger
from harborline.definition import load_definition
from harborline.errors import DefinitionError
from harborline.jobs import Toolbox
from harborline.models.artifacts import Credential
from harborline.models.pipeline import PipelineDefinition
from harborline.models.reports import PipelineOutcome
from harborline.monitor.renderer import ReportRenderer

console = Console()

EXIT_FAILED = 1
EXIT_INVALID = 2
EXIT_CANCELLED = 130


def make_toolbox(settings: HarborlineSettings) -> Toolbox:
    """Build the components jobs drive."""
    return Toolbox(settings)


def registry_credentials(
    definition: PipelineDefinition, settings: HarborlineSettings
) -> dict[str, Credential]:
    """One Credential per registry named by the definition, when configured."""
    credentials: dict[str, Credential] = {}
    for job in definition.jobs:
        registry = job.with_.get("registry")
        if not registry or registry in credentials:
            continue
        credential = settings.credential_for(str(registry))
        if credential is not None:
            credentials[str(registry)] = credential
    return credentials


def run_cmd(
    definition_path: Path = typer.Argument(
        ...,
        metavar="DEFINITION",
        help="Pipeline definition (.toml or .json).",
    ),
    event: str = typer.Option(
        None,
        "--event",
        "-e",
        help="Triggering event, e.g. push.  Omit for a manual run.",
    ),
    branch: str = typer.Option(
        None,
        "--branch",
        "-b",
        help="Branch the event happened on.",
    ),
    ledger_db: Path = typer.Option(
        None,
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database (default from settings).",
    ),
    workers: int = typer.Option(
        None,
        "--workers",
        "-w",
        min=1,
        help="Maximum concurrently running jobs (default from settings).",
    ),
) -> None:
    """Run a pipeline and print its report."""
    settings = HarborlineSettings()
    try:
        definition = load_definition(definition_path)
    except DefinitionError as exc:
        console.print(f"[bold red]Invalid definition:[/bold red] {definition_path}")
        for problem in exc.problems or [str(exc)]:
            console.print(f"  [red]-[/red] {problem}")
        raise typer.Exit(code=EXIT_INVALID)

    if not definition.should_trigger(event, branch):
        console.print(
            f"[yellow]{definition.name} is not triggered by "
            f"event={event!r} branch={branch!r}; nothing to do.[/yellow]"
        )
        return

    orchestrator = PipelineOrchestrator(
        definition,
        make_toolbox(settings),
        ledger=RunLedger(ledger_db or settings.ledger_path),
        credentials=registry_credentials(definition, settings),
        max_workers=workers,
        workdir=definition_path.resolve().parent,
    )
    console.print(f"[dim]Run {orchestrator.run_id} of {definition.name} started.[/dim]")

    previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: orchestrator.cancel())
    try:
        report = orchestrator.run()
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    ReportRenderer(console=console).print_report(report)
    if report.outcome == PipelineOutcome.CANCELLED:
        raise typer.Exit(code=EXIT_CANCELLED)
    if report.outcome == PipelineOutcome.FAILED:
        raise typer.Exit(code=EXIT_FAILED)
