"""``harborline probe URL``: run one verification against an endpoint."""

from __future__ import annotations

import typer
from rich.console import Console

from harborline.config import HarborlineSettings
from harborline.monitor.renderer import ReportRenderer
from harborline.probe.verification import VerificationProbe

console = Console()


def make_probe() -> VerificationProbe:
    return VerificationProbe()


def probe_cmd(
    url: str = typer.Argument(..., help="Endpoint to GET, e.g. http://localhost:80."),
    timeout: float = typer.Option(
        None, "--timeout", "-t", help="Seconds to keep polling (default from settings)."
    ),
    interval: float = typer.Option(
        None, "--interval", "-i", help="Seconds between attempts (default from settings)."
    ),
) -> None:
    """Poll URL until it answers 2xx or the timeout elapses."""
    settings = HarborlineSettings()
    timeout = timeout if timeout is not None else settings.probe_timeout_seconds
    interval = interval if interval is not None else settings.probe_interval_seconds
    if timeout <= 0 or interval <= 0:
        console.print("[bold red]--timeout and --interval must be positive.[/bold red]")
        raise typer.Exit(code=2)

    result = make_probe().check(url, timeout, interval)
    console.print(ReportRenderer(console=console).render_probe(result))
    if not result.healthy:
        raise typer.Exit(code=1)
