"""Run state machine.

Enforces:
- Valid status transitions only (RUN_TRANSITIONS table)
- Stage results are append-only
- Nothing changes once the run is terminal
- Every stage result and the terminal record reach the Run Ledger
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any

from shipwright.core.run_ledger import RunLedger
from shipwright.models.runs import (
    RUN_TRANSITIONS,
    PipelineRun,
    RunStatus,
    StageName,
    StageResult,
)

logger = logging.getLogger(__name__)


class InvalidRunTransitionError(RuntimeError):
    """Raised when a requested status transition is not valid."""


class RunStateMachine:
    """Owns the mutable state of one in-flight run.

    Callers read immutable ``PipelineRun`` snapshots via ``snapshot()``.

    Parameters
    ----------
    run_id, revision, target:
        Identity of the run.
    ledger:
        Optional Run Ledger; when given, results are recorded as they land.
    """

    def __init__(
        self,
        run_id: str,
        revision: str,
        target: str,
        ledger: RunLedger | None = None,
    ) -> None:
        self._ledger = ledger
        self._run = PipelineRun(run_id=run_id, revision=revision, target=target)
        self._lock = threading.Lock()

    @property
    def status(self) -> RunStatus:
        return self._run.status

    @property
    def run_id(self) -> str:
        return self._run.run_id

    def snapshot(self) -> PipelineRun:
        with self._lock:
            return self._run

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(self, target_status: RunStatus) -> PipelineRun:
        """Move the run to *target_status*, validating the transition."""
        with self._lock:
            current = self._run.status
            allowed = RUN_TRANSITIONS.get(current, set())
            if target_status not in allowed:
                raise InvalidRunTransitionError(
                    f"Cannot transition run {self._run.run_id} from {current.value} "
                    f"to {target_status.value}. Allowed: {sorted(s.value for s in allowed)}"
                )
            update: dict[str, Any] = {"status": target_status}
            if target_status in (RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.ROLLED_BACK):
                update["finished_at"] = datetime.now(timezone.utc)
                update["current_stage"] = None
            self._run = self._run.model_copy(update=update)
            run = self._run

        logger.info("Run %s: %s -> %s", run.run_id, current.value, target_status.value)
        if run.is_terminal and self._ledger is not None:
            self._ledger.record_run(run)
        return run

    def enter_stage(self, stage: StageName) -> None:
        self._update(current_stage=stage)

    def append(self, result: StageResult) -> PipelineRun:
        """Append a stage result.  Rejected once the run is terminal."""
        with self._lock:
            self._check_mutable()
            self._run = self._run.model_copy(
                update={"stage_results": [*self._run.stage_results, result]}
            )
            run = self._run
        if self._ledger is not None:
            self._ledger.record_stage(run.run_id, result)
        return run

    def annotate(self, **fields: Any) -> PipelineRun:
        """Set run-level fields (versions and flags) while the run is live."""
        allowed = {"candidate_version", "prior_version", "escalated", "inconsistent", "cancelled"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Cannot annotate run with {sorted(unknown)}")
        return self._update(**fields)

    def _update(self, **fields: Any) -> PipelineRun:
        with self._lock:
            self._check_mutable()
            self._run = self._run.model_copy(update=fields)
            return self._run

    def _check_mutable(self) -> None:
        if self._run.is_terminal:
            raise InvalidRunTransitionError(
                f"Run {self._run.run_id} is {self._run.status.value}; it can no longer change"
            )
