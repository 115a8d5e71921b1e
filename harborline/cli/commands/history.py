"""``harborline history RUN_ID``: show a run's ledger and chain status."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from harborline.config import HarborlineSettings
from harborline.core.run_ledger import LedgerIntegrityError, RunLedger
from harborline.monitor.renderer import ReportRenderer

console = Console()


def history_cmd(
    run_id: str = typer.Argument(..., help="The pipeline run ID to show."),
    ledger_db: Path = typer.Option(
        None,
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database (default from settings).",
    ),
) -> None:
    """Print every recorded transition of a run and verify its hash chain."""
    db_path = ledger_db or HarborlineSettings().ledger_path
    if not db_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {db_path}")
        raise typer.Exit(code=1)

    ledger = RunLedger(db_path)
    entries = ledger.get_run_entries(run_id)
    if not entries:
        console.print(f"[bold red]Run not found:[/bold red] {run_id}")
        all_runs = ledger.get_all_run_ids()
        if all_runs:
            console.print("\n[bold]Available runs:[/bold]")
            for rid in all_runs[:10]:
                console.print(f"  [cyan]{rid}[/cyan]")
            if len(all_runs) > 10:
                console.print(f"  [dim]... and {len(all_runs) - 10} more[/dim]")
        raise typer.Exit(code=1)

    renderer = ReportRenderer(console=console)
    console.print(renderer.render_history(run_id, entries))
    try:
        valid = ledger.verify_chain(run_id)
    except LedgerIntegrityError as exc:
        console.print(f"[bold red]Chain verification failed:[/bold red] {exc}")
        valid = False
    renderer.print_chain_verification(run_id, valid)
    if not valid:
        raise typer.Exit(code=1)
