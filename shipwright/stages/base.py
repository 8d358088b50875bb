"""Abstract base stage with an enforced lifecycle.

Every concrete stage inherits from BaseStage and implements only ``execute()``.
The ``run_stage()`` wrapper is **not overridable**; it times the stage,
converts typed pipeline errors into a failed ``StageResult`` and always
returns a result, so the runner never has to guess what happened.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, ClassVar, final

from shipwright.core.errors import FailureKind, PipelineError, RemoteCommandFailure
from shipwright.core.vault import CredentialHandle
from shipwright.models.artifacts import Artifact
from shipwright.models.runs import (
    ErrorDetail,
    PipelineRun,
    StageName,
    StageResult,
    StageStatus,
)
from shipwright.models.targets import DeploymentTarget

logger = logging.getLogger(__name__)


@dataclass
class StageContext:
    """Run-wide state handed from stage to stage.

    ``run`` is the accumulated ``PipelineRun`` snapshot as of the start of
    the current stage.  Stages fill in ``build_path``, ``artifact`` and
    ``prior_version`` for the stages after them.
    """

    run: PipelineRun
    target: DeploymentTarget
    credential: CredentialHandle
    build_path: Path | None = None
    artifact: Artifact | None = None
    prior_version: str | None = None
    deployed: bool = False  # deploy issued mutating remote commands
    completed_commands: int = 0  # deploy commands that finished

    @property
    def run_id(self) -> str:
        return self.run.run_id

    @property
    def revision(self) -> str:
        return self.run.revision


class BaseStage(abc.ABC):
    """Abstract base for all pipeline stages.

    Subclasses **must** set ``name`` and implement ``execute(ctx)``, which
    returns a details dict (an ``"output"`` key becomes the result's
    captured output) or raises a ``PipelineError``.

    Subclasses **must not** override ``run_stage()``.
    """

    name: ClassVar[StageName]

    @abc.abstractmethod
    def execute(self, ctx: StageContext) -> dict[str, Any]:
        """Execute the stage's core logic.

        Parameters
        ----------
        ctx:
            Run-wide state; see ``StageContext``.

        Returns
        -------
        dict:
            Structured details recorded on the ``StageResult``.
        """
        ...

    @property
    def display_name(self) -> str:
        return self.name.value.capitalize()

    # ------------------------------------------------------------------
    # Lifecycle (NOT overridable)
    # ------------------------------------------------------------------

    @final
    def run_stage(self, ctx: StageContext) -> StageResult:
        """Execute the stage and return its result.  **Do not override.**"""
        started = datetime.now(timezone.utc)
        logger.info("%s [%s] started", self.display_name, ctx.run_id)

        try:
            details = dict(self.execute(ctx))
        except PipelineError as exc:
            logger.error("%s [%s] failed (%s): %s", self.display_name, ctx.run_id, exc.kind.value, exc)
            return StageResult(
                stage=self.name,
                status=StageStatus.FAILURE,
                started_at=started,
                finished_at=datetime.now(timezone.utc),
                output=exc.output,
                error=self._error_detail(exc),
            )
        except Exception as exc:
            logger.exception("%s [%s] crashed", self.display_name, ctx.run_id)
            return StageResult(
                stage=self.name,
                status=StageStatus.FAILURE,
                started_at=started,
                finished_at=datetime.now(timezone.utc),
                error=ErrorDetail(
                    kind=FailureKind.INTERNAL,
                    message=f"{type(exc).__name__}: {exc}",
                ),
            )

        output = str(details.pop("output", ""))
        result = StageResult(
            stage=self.name,
            status=StageStatus.SUCCESS,
            started_at=started,
            finished_at=datetime.now(timezone.utc),
            output=output,
            details=details,
        )
        logger.info(
            "%s [%s] succeeded in %.1fs", self.display_name, ctx.run_id, result.duration_seconds
        )
        return result

    @staticmethod
    def _error_detail(exc: PipelineError) -> ErrorDetail:
        command = None
        exit_status = None
        if isinstance(exc, RemoteCommandFailure) and exc.failed is not None:
            command = exc.failed.operation.display
            exit_status = exc.failed.exit_status
        return ErrorDetail(
            kind=exc.kind,
            message=str(exc),
            command=command,
            exit_status=exit_status,
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} stage={self.name.value!r}>"
