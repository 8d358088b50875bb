"""Main Typer application: imports and registers all CLI commands.

Entry point: ``shipwright`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

from typing import Optional

import typer

from shipwright.cli.commands.artifacts import artifacts_cmd, prune_cmd
from shipwright.cli.commands.history import history_cmd
from shipwright.cli.commands.rollback import rollback_cmd
from shipwright.cli.commands.run import run_cmd
from shipwright.cli.commands.show import show_cmd
from shipwright.cli.commands.targets import targets_cmd
from shipwright.config import ProdConfig
from shipwright.logging_config import configure_logging

app = typer.Typer(
    name="shipwright",
    help="Shipwright: build, test, package, deploy and verify, with automatic rollback.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING, ERROR."),
    log_format: Optional[str] = typer.Option(None, "--log-format", help="rich, json or text."),
) -> None:
    """Configure logging before any command runs."""
    settings = ProdConfig()
    configure_logging(
        level=log_level or ("DEBUG" if settings.debug else settings.log_level),
        fmt=log_format or settings.log_format,
    )


# Register subcommands
app.command(name="run", help="Run the pipeline for a revision.")(run_cmd)
app.command(name="show", help="Show a recorded run.")(show_cmd)
app.command(name="history", help="List recent runs.")(history_cmd)
app.command(name="targets", help="List deployment targets.")(targets_cmd)
app.command(name="artifacts", help="List stored artifacts.")(artifacts_cmd)
app.command(name="prune", help="Apply the artifact retention policy.")(prune_cmd)
app.command(name="rollback", help="Roll a target back to a stored version.")(rollback_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
