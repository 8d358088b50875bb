"""``shipwright show RUN_ID``: display a recorded run from the ledger."""

from __future__ import annotations

import json

import typer

from shipwright.cli.commands.common import console
from shipwright.config import ProdConfig
from shipwright.core.run_ledger import LedgerIntegrityError, RunLedger
from shipwright.monitor.renderer import RunRenderer


def show_cmd(
    run_id: str = typer.Argument(..., help="The pipeline run ID."),
    json_output: bool = typer.Option(
        False, "--json", help="Export the run and its ledger entries as JSON."
    ),
    verify_chain: bool = typer.Option(
        False, "--verify-chain", help="Verify the run's hash chain."
    ),
    output: bool = typer.Option(False, "--output", help="Include captured stage output."),
) -> None:
    """Show the record of one pipeline run."""
    ledger = RunLedger(ProdConfig().ledger_path)
    run = ledger.get_run(run_id)
    if run is None:
        console.print(f"[bold red]Run not found:[/bold red] {run_id}")
        raise typer.Exit(code=1)

    if verify_chain:
        try:
            ledger.verify_chain(run_id)
        except LedgerIntegrityError as exc:
            console.print(f"[bold red]Hash chain BROKEN:[/bold red] {exc}")
            raise typer.Exit(code=1) from exc
        if not json_output:
            console.print("[green]Hash chain valid.[/green]")

    if json_output:
        typer.echo(json.dumps(ledger.export_run(run_id), indent=2))
        return
    console.print(RunRenderer(console=console).render_run(run, show_output=output))
