"""Main Typer application: imports and registers all CLI commands.

Entry point: ``harborline`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from harborline.cli.commands.history import history_cmd
from harborline.cli.commands.probe_cmd import probe_cmd
from harborline.cli.commands.run_cmd import run_cmd
from harborline.cli.commands.validate import validate_cmd
from harborline.config import HarborlineSettings

app = typer.Typer(
    name="harborline",
    help="Harborline: build, publish, deploy and verify container artifacts.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="run", help="Run a pipeline definition.")(run_cmd)
app.command(name="validate", help="Validate a pipeline definition.")(validate_cmd)
app.command(name="probe", help="Verify an HTTP endpoint.")(probe_cmd)
app.command(name="history", help="Show a run's ledger.")(history_cmd)


def setup_logging(level: str) -> None:
    """Route all ``harborline`` loggers through Rich on stderr."""
    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    root = logging.getLogger("harborline")
    root.handlers[:] = [handler]
    root.setLevel(level.upper())
    root.propagate = False


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Harborline: build, publish, deploy and verify container artifacts."""
    setup_logging("DEBUG" if verbose else HarborlineSettings().log_level)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
