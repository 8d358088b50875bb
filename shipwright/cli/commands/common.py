"""Helpers shared by CLI commands."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from shipwright.config import ProdConfig
from shipwright.core.errors import ConfigError
from shipwright.core.orchestrator import PipelineRunner
from shipwright.core.production_guard import ProductionConfigError
from shipwright.core.remote_executor import LocalTransport
from shipwright.models.config import PipelineConfig, load_pipeline_config

console = Console()


def load_pipeline(config_path: Path | None, settings: ProdConfig) -> PipelineConfig:
    try:
        return load_pipeline_config(config_path or settings.pipeline_config_path)
    except ConfigError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        raise typer.Exit(code=2) from exc


def build_runner(config_path: Path | None, *, local: bool = False) -> PipelineRunner:
    """Construct a runner from the environment and the pipeline definition."""
    settings = ProdConfig()
    pipeline = load_pipeline(config_path, settings)
    try:
        return PipelineRunner(
            pipeline,
            prod_config=settings,
            transport=LocalTransport() if local else None,
        )
    except ProductionConfigError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=2) from exc
