"""Shipwright run monitor: read-only rendering over the run ledger.

Modules
-------
renderer
    ``RunRenderer`` turns ``PipelineRun`` records, targets and artifacts
    into Rich renderables for terminal display.
"""
