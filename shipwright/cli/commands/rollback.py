"""``shipwright rollback TARGET --to VERSION``: operator-triggered rollback.

Goes through the same controller as automatic rollback: integrity-checked
artifact from the store, the deploy command sequence, health verification,
then a compare-and-set of the active version.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from shipwright.cli.commands.common import build_runner, console
from shipwright.core.artifact_store import ArtifactNotFoundError
from shipwright.core.errors import ConfigError
from shipwright.core.target_lock import TargetLockTimeout
from shipwright.core.vault import SecretNotFoundError


def rollback_cmd(
    target: str = typer.Argument(..., help="Target name."),
    to_version: str = typer.Option(..., "--to", help="Stored artifact version to restore."),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Pipeline definition (shipwright.toml)."
    ),
    local: bool = typer.Option(
        False, "--local", help="Run remote operations on this machine instead of over SSH."
    ),
) -> None:
    """Restore TARGET to a previously stored artifact version."""
    runner = build_runner(config_path, local=local)
    try:
        outcome = runner.rollback_to(target, to_version)
    except (
        ArtifactNotFoundError, ConfigError, SecretNotFoundError, TargetLockTimeout
    ) as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1) from exc

    if not outcome.succeeded:
        console.print(f"[bold red]Rollback exhausted:[/bold red] {outcome.detail}")
        raise typer.Exit(code=1)
    console.print(f"[green]{target} restored to {outcome.version}.[/green]")
