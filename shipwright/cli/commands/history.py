"""``shipwright history``: recent pipeline runs, newest first."""

from __future__ import annotations

from typing import Optional

import typer

from shipwright.cli.commands.common import console
from shipwright.config import ProdConfig
from shipwright.core.run_ledger import RunLedger
from shipwright.monitor.renderer import RunRenderer


def history_cmd(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of runs to show."),
    target: Optional[str] = typer.Option(None, "--target", "-t", help="Only this target."),
) -> None:
    """List recent pipeline runs."""
    runs = RunLedger(ProdConfig().ledger_path).list_runs(limit=limit, target=target)
    if not runs:
        console.print("[dim]No runs recorded.[/dim]")
        return
    console.print(RunRenderer(console=console).render_history(runs))
