"""Verify stage: the target must be healthy *at the candidate version*."""

from __future__ import annotations

from typing import Any, ClassVar

from shipwright.core.errors import PackageFailure, VerificationFailure
from shipwright.core.health import HealthVerifier
from shipwright.models.runs import StageName
from shipwright.stages.base import BaseStage, StageContext


class VerifyStage(BaseStage):
    """Stage 5: Verify.  Inconclusive counts as a failure."""

    name: ClassVar[StageName] = StageName.VERIFY

    def __init__(self, verifier: HealthVerifier, *, timeout: float = 30.0) -> None:
        self._verifier = verifier
        self._timeout = timeout

    def execute(self, ctx: StageContext) -> dict[str, Any]:
        if ctx.artifact is None:
            raise PackageFailure("No packaged artifact to verify")
        outcome = self._verifier.verify(
            ctx.target, ctx.credential, ctx.artifact.version, self._timeout
        )
        if not outcome.healthy:
            raise VerificationFailure(
                f"{ctx.target.name} {outcome.status.value}: {outcome.detail}",
                output=outcome.detail,
            )
        return {
            "health": outcome.status.value,
            "observed_version": outcome.observed_version,
            "polls": outcome.polls,
            "output": outcome.detail,
        }
