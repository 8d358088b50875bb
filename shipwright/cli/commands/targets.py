"""``shipwright targets``: registered targets and their active versions."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from shipwright.cli.commands.common import console, load_pipeline
from shipwright.config import ProdConfig
from shipwright.core.target_registry import TargetNotFoundError, TargetRegistry
from shipwright.monitor.renderer import RunRenderer


def targets_cmd(
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Pipeline definition (shipwright.toml)."
    ),
    history: Optional[str] = typer.Option(
        None, "--history", help="Show the activation history of this target."
    ),
) -> None:
    """List deployment targets, registering any new ones from the config."""
    settings = ProdConfig()
    registry = TargetRegistry(settings.registry_path)
    renderer = RunRenderer(console=console)

    if history is not None:
        try:
            registry.get(history)
        except TargetNotFoundError as exc:
            console.print(f"[bold red]{exc}[/bold red]")
            raise typer.Exit(code=1) from exc
        console.print(renderer.render_history_of_target(registry.history(history)))
        return

    pipeline = load_pipeline(config_path, settings)
    for target in pipeline.targets:
        registry.register(target)
    console.print(renderer.render_targets(registry.list_targets()))
