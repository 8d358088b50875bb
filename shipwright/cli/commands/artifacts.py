"""``shipwright artifacts`` and ``shipwright prune``: the artifact store."""

from __future__ import annotations

from typing import Optional

import typer

from shipwright.cli.commands.common import console
from shipwright.config import ProdConfig
from shipwright.core.artifact_store import VersionedArtifactStore
from shipwright.core.target_registry import TargetRegistry
from shipwright.monitor.renderer import RunRenderer


def artifacts_cmd() -> None:
    """List stored artifacts."""
    settings = ProdConfig()
    store = VersionedArtifactStore(settings.artifact_store_path)
    active = TargetRegistry(settings.registry_path).active_versions()
    artifacts = store.list_artifacts()
    if not artifacts:
        console.print("[dim]No artifacts stored.[/dim]")
        return
    console.print(RunRenderer(console=console).render_artifacts(artifacts, active))


def prune_cmd(
    keep: Optional[int] = typer.Option(
        None, "--keep", "-k", min=0, help="Versions to keep (defaults to retention_keep)."
    ),
) -> None:
    """Evict old artifacts.  Versions active on any target are always kept."""
    settings = ProdConfig()
    store = VersionedArtifactStore(settings.artifact_store_path)
    protected = TargetRegistry(settings.registry_path).active_versions()
    evicted = store.evict(settings.retention_keep if keep is None else keep, protected)
    if not evicted:
        console.print("[dim]Nothing to prune.[/dim]")
        return
    for artifact in evicted:
        console.print(f"Evicted [cyan]{artifact.version}[/cyan] ({artifact.name})")
