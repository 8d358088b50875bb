"""Shipwright CLI: Typer-based command-line interface.

Provides the ``shipwright`` command with subcommands for running the
pipeline, inspecting runs, targets and artifacts, pruning old artifacts,
and rolling a target back by hand.

All output uses Rich for formatted terminal display.
"""
