"""Rollback stage: the recovery branch after a failed deploy or verify."""

from __future__ import annotations

from typing import Any, ClassVar

from shipwright.core.artifact_store import ArtifactNotFoundError, VersionedArtifactStore
from shipwright.core.errors import RollbackFailure
from shipwright.core.rollback import RollbackController
from shipwright.models.runs import StageName
from shipwright.stages.base import BaseStage, StageContext


class RollbackStage(BaseStage):
    """Restores ``ctx.prior_version``.  Raises ``RollbackFailure`` when it cannot."""

    name: ClassVar[StageName] = StageName.ROLLBACK

    def __init__(self, controller: RollbackController, store: VersionedArtifactStore) -> None:
        self._controller = controller
        self._store = store

    def execute(self, ctx: StageContext) -> dict[str, Any]:
        prior = ctx.prior_version
        candidate = ctx.artifact.version if ctx.artifact else None
        if prior is None or prior == candidate:
            raise RollbackFailure(
                f"rollback exhausted: no prior version to restore on {ctx.target.name}"
            )
        try:
            artifact = self._store.get(prior)
        except ArtifactNotFoundError as exc:
            raise RollbackFailure(f"rollback exhausted: {exc}") from exc

        outcome = self._controller.rollback(
            ctx.target, artifact, ctx.credential, run_id=ctx.run_id
        )
        output = outcome.report.output if outcome.report else ""
        if not outcome.succeeded:
            raise RollbackFailure(f"rollback exhausted: {outcome.detail}", output=output)
        return {
            "version": outcome.version,
            "health": outcome.health.status.value if outcome.health else None,
            "output": output,
        }
