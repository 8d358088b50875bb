"""Rich terminal rendering of pipeline runs, targets and artifacts.

Everything here reads finished records (``PipelineRun`` from the ledger,
targets from the registry); nothing keeps state of its own.

Color scheme
------------
- green     : success / succeeded
- red       : failure / failed
- yellow    : rolled back
- dim       : skipped
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from shipwright.models.artifacts import Artifact
from shipwright.models.runs import PipelineRun, RunStatus, StageStatus
from shipwright.models.targets import Activation, DeploymentTarget

# ---------------------------------------------------------------------------
# Status -> Rich style mapping
# ---------------------------------------------------------------------------

_STAGE_ICONS: dict[StageStatus, str] = {
    StageStatus.SUCCESS: "[green]SUCCESS[/green]",
    StageStatus.FAILURE: "[bold red]FAILURE[/bold red]",
    StageStatus.SKIPPED: "[dim]SKIPPED[/dim]",
}

_RUN_STYLES: dict[RunStatus, str] = {
    RunStatus.SUCCEEDED: "bold green",
    RunStatus.FAILED: "bold red",
    RunStatus.ROLLED_BACK: "bold yellow",
    RunStatus.RUNNING: "yellow",
    RunStatus.PENDING: "dim",
}


def run_status_markup(status: RunStatus) -> str:
    style = _RUN_STYLES.get(status, "")
    return f"[{style}]{status.value.upper()}[/{style}]"


class RunRenderer:
    """Renders runs as Rich renderables.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Single run
    # ------------------------------------------------------------------

    def render_run(self, run: PipelineRun, *, show_output: bool = False) -> Panel:
        """Render one run as a Panel containing its stage table."""
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Stage", min_width=10)
        table.add_column("Status", min_width=10, justify="center")
        table.add_column("Duration", justify="right", width=9)
        table.add_column("Details", min_width=20)

        for result in run.stage_results:
            if result.error is not None:
                details = f"[red]{result.error.kind.value}: {result.error.message}[/red]"
                if result.error.command:
                    details += f"\n[dim]$ {result.error.command}[/dim]"
            elif result.status == StageStatus.SKIPPED:
                details = f"[dim]{result.output or '-'}[/dim]"
            else:
                version = result.details.get("version")
                details = f"version {version}" if version else "[dim]-[/dim]"
            table.add_row(
                result.stage.value,
                _STAGE_ICONS.get(result.status, result.status.value),
                f"{result.duration_seconds:.1f}s",
                details,
            )

        summary_parts: list[str] = [
            f"[bold]Status:[/bold] {run_status_markup(run.status)}",
            f"[bold]Revision:[/bold] {run.revision}",
            f"[bold]Target:[/bold] {run.target}",
            f"[bold]Candidate:[/bold] {run.candidate_version or '-'}",
            f"[bold]Prior:[/bold] {run.prior_version or '-'}",
        ]
        if run.escalated:
            summary_parts.append("[bold red]ESCALATED: rollback exhausted[/bold red]")
        if run.inconsistent:
            summary_parts.append("[bold red]INCONSISTENT target state[/bold red]")
        if run.cancelled:
            summary_parts.append("[yellow]cancelled[/yellow]")

        parts: list = [table, Text(""), Text.from_markup("  |  ".join(summary_parts))]
        if show_output:
            for result in run.stage_results:
                if result.output:
                    parts.append(Text(""))
                    parts.append(Text(f"--- {result.stage.value} ---", style="bold"))
                    parts.append(Text(result.output))

        finished = run.finished_at.strftime("%Y-%m-%d %H:%M:%S UTC") if run.finished_at else "-"
        return Panel(
            Group(*parts),
            title=f"[bold]Run {run.run_id}[/bold]",
            subtitle=f"Finished: {finished}",
            border_style="blue",
            padding=(1, 2),
        )

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def render_history(self, runs: list[PipelineRun]) -> Table:
        table = Table(title="Pipeline runs", header_style="bold cyan")
        table.add_column("Run")
        table.add_column("Revision")
        table.add_column("Target")
        table.add_column("Status", justify="center")
        table.add_column("Version")
        table.add_column("Flags")
        for run in runs:
            flags = [f for f, on in (
                ("escalated", run.escalated),
                ("inconsistent", run.inconsistent),
                ("cancelled", run.cancelled),
            ) if on]
            table.add_row(
                run.run_id,
                run.revision,
                run.target,
                run_status_markup(run.status),
                run.candidate_version or "-",
                ", ".join(flags) or "[dim]-[/dim]",
            )
        return table

    def render_targets(self, targets: list[DeploymentTarget]) -> Table:
        table = Table(title="Deployment targets", header_style="bold cyan")
        table.add_column("Name")
        table.add_column("Address")
        table.add_column("Service")
        table.add_column("Active version", justify="center")
        for target in targets:
            table.add_row(
                target.name,
                f"{target.address}:{target.port}",
                target.service.name,
                target.active_version or "[dim]none[/dim]",
            )
        return table

    def render_history_of_target(self, activations: list[Activation]) -> Table:
        table = Table(title="Activations", header_style="bold cyan")
        table.add_column("When")
        table.add_column("From")
        table.add_column("To")
        table.add_column("Reason")
        table.add_column("Run")
        for a in activations:
            table.add_row(
                a.activated_at.strftime("%Y-%m-%d %H:%M:%S"),
                a.previous_version or "-",
                a.version,
                a.reason,
                a.run_id,
            )
        return table

    def render_artifacts(self, artifacts: list[Artifact], active: set[str]) -> Table:
        table = Table(title="Artifacts", header_style="bold cyan")
        table.add_column("Version", justify="right")
        table.add_column("Name")
        table.add_column("Revision")
        table.add_column("Size", justify="right")
        table.add_column("Digest")
        table.add_column("Active", justify="center")
        for artifact in artifacts:
            table.add_row(
                artifact.version,
                artifact.name,
                artifact.source_revision,
                f"{artifact.size_bytes:,}",
                artifact.digest[:19],
                "[green]yes[/green]" if artifact.version in active else "",
            )
        return table
