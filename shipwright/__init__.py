"""Shipwright: a deployment pipeline orchestrator.

Takes a revision through build, test, package, deploy and post-deploy
verification against a single target, with automatic rollback to the
previously active artifact when verification fails:
  - Versioned, integrity-checked artifact store with retention
  - Scoped credential acquisition (secrets live only for the run)
  - Typed remote operations over SSH with per-command exit checks
  - Version-aware health verification with bounded retries
  - Per-target locking and compare-and-set active-version pointer
  - Hash-chained run ledger for dashboards and audit
"""

__version__ = "0.1.0"
__description__ = "Deployment pipeline orchestrator with automatic rollback"

from shipwright.core.orchestrator import CancellationToken, PipelineRunner
from shipwright.cli.app import app as cli

__all__ = ["PipelineRunner", "CancellationToken", "cli", "__version__"]
