"""``harborline validate DEFINITION``: check a definition without running it."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from harborline.core.job_graph import JobGraph
from harborline.definition import load_definition
from harborline.errors import DefinitionError
from harborline.monitor.renderer import ReportRenderer

console = Console()


def validate_cmd(
    definition_path: Path = typer.Argument(
        ...,
        metavar="DEFINITION",
        help="Pipeline definition (.toml or .json).",
    ),
) -> None:
    """Parse a definition and print its jobs in execution order."""
    try:
        definition = load_definition(definition_path)
    except DefinitionError as exc:
        console.print(f"[bold red]Invalid definition:[/bold red] {definition_path}")
        for problem in exc.problems or [str(exc)]:
            console.print(f"  [red]-[/red] {problem}")
        raise typer.Exit(code=1)

    console.print(ReportRenderer(console=console).render_plan(definition, JobGraph(definition.jobs)))
    trigger = definition.trigger
    console.print(
        f"[bold]Trigger:[/bold] events={trigger.events or ['*']} "
        f"branches={trigger.branches or ['*']}"
    )
    console.print("[green]Definition is valid.[/green]")
