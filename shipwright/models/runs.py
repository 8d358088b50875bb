"""Pipeline run and stage result models.

A run moves through an explicit state machine (``RUN_TRANSITIONS``) so the
partial-failure branches are distinguishable: a deploy failure ends
``failed``, a verify failure ends ``rolled_back`` or ``failed`` with the
escalation flag set.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shipwright.core.errors import FailureKind


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


TERMINAL_STATUSES: frozenset[RunStatus] = frozenset({
    RunStatus.SUCCEEDED,
    RunStatus.FAILED,
    RunStatus.ROLLED_BACK,
})

# Terminal statuses have no outgoing transitions.
RUN_TRANSITIONS: dict[RunStatus, set[RunStatus]] = {
    RunStatus.PENDING: {RunStatus.RUNNING, RunStatus.FAILED},
    RunStatus.RUNNING: {RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.ROLLED_BACK},
    RunStatus.SUCCEEDED: set(),
    RunStatus.FAILED: set(),
    RunStatus.ROLLED_BACK: set(),
}


class StageName(str, Enum):
    BUILD = "build"
    TEST = "test"
    PACKAGE = "package"
    DEPLOY = "deploy"
    VERIFY = "verify"
    ROLLBACK = "rollback"


class StageStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


class ErrorDetail(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: FailureKind
    message: str
    command: str | None = None  # the remote command that failed, if any
    exit_status: int | None = None


class StageResult(BaseModel):
    """Outcome of one stage.  Appended to a run, never edited."""

    model_config = ConfigDict(frozen=True)

    stage: StageName
    status: StageStatus
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    finished_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    output: str = ""
    error: ErrorDetail | None = None
    details: dict[str, Any] = {}

    @property
    def succeeded(self) -> bool:
        return self.status == StageStatus.SUCCESS

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


class PipelineRun(BaseModel):
    """A snapshot of one pipeline execution attempt.

    Owned by the runner while in flight (through ``RunStateMachine``);
    snapshots are frozen, and a terminal run is a historical record.
    """

    model_config = ConfigDict(frozen=True)

    run_id: str
    revision: str
    target: str
    status: RunStatus = RunStatus.PENDING
    current_stage: StageName | None = None
    stage_results: list[StageResult] = []
    candidate_version: str | None = None
    prior_version: str | None = None
    escalated: bool = False  # rollback exhausted: needs a human
    inconsistent: bool = False  # deploy failed and the prior version is not healthy
    cancelled: bool = False
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def result_for(self, stage: StageName) -> StageResult | None:
        """Return the last result recorded for *stage*, if any."""
        for result in reversed(self.stage_results):
            if result.stage == stage:
                return result
        return None
