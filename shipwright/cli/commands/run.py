"""``shipwright run REVISION``: build, test, package, deploy and verify.

Exits 0 only when the run ends ``succeeded``.  The first Ctrl+C requests a
cooperative cancel (honored before deploy starts); the run record is
still written.
"""

from __future__ import annotations

import json
import signal
from pathlib import Path
from typing import Optional

import typer

from shipwright.cli.commands.common import build_runner, console
from shipwright.core.orchestrator import CancellationToken
from shipwright.models.runs import RunStatus
from shipwright.monitor.renderer import RunRenderer


def run_cmd(
    revision: str = typer.Argument(..., help="Revision identifier from the trigger."),
    target: Optional[str] = typer.Option(
        None, "--target", "-t", help="Target name (defaults to the configured default)."
    ),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Pipeline definition (shipwright.toml)."
    ),
    local: bool = typer.Option(
        False, "--local", help="Run remote operations on this machine instead of over SSH."
    ),
    json_output: bool = typer.Option(False, "--json", help="Print the run record as JSON."),
) -> None:
    """Run the deployment pipeline for REVISION."""
    runner = build_runner(config_path, local=local)
    token = CancellationToken()

    def _request_cancel(signum, frame) -> None:
        console.print("[yellow]Cancellation requested; finishing the current stage...[/yellow]")
        token.cancel()
        signal.signal(signal.SIGINT, previous)

    previous = signal.signal(signal.SIGINT, _request_cancel)
    try:
        run = runner.run_pipeline(revision, target, cancel=token)
    finally:
        signal.signal(signal.SIGINT, previous)

    if json_output:
        typer.echo(json.dumps(run.model_dump(mode="json"), indent=2))
    else:
        console.print(RunRenderer(console=console).render_run(run))

    if run.status != RunStatus.SUCCEEDED:
        raise typer.Exit(code=1)
