"""Rollback controller: restore a target's previously active artifact.

The prior artifact comes from the artifact store (integrity re-checked on
retrieval) and is never rebuilt.  The same transfer/stop/install/start
sequence as a deploy is sent through the remote executor, the health
verifier is run against the restored version, and only then does the
active-version pointer move back.

Any failure along the way ends the attempt with ``exhausted=True``.  There
is no second attempt; recovery past this point is a human operation.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict

from shipwright.core.artifact_store import (
    ArtifactIntegrityError,
    ArtifactNotFoundError,
    VersionedArtifactStore,
)
from shipwright.core.errors import ConnectionFailure
from shipwright.core.health import HealthVerifier
from shipwright.core.remote_executor import RemoteExecutor, deploy_operations
from shipwright.core.target_registry import ActiveVersionConflict, TargetRegistry
from shipwright.core.vault import CredentialHandle
from shipwright.models.artifacts import Artifact
from shipwright.models.health import HealthOutcome
from shipwright.models.remote import ExecutionReport
from shipwright.models.targets import DeploymentTarget

logger = logging.getLogger(__name__)


class RollbackOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    succeeded: bool
    version: str
    exhausted: bool = False  # automatic recovery gave up
    detail: str = ""
    report: ExecutionReport | None = None
    health: HealthOutcome | None = None


class RollbackController:
    """Restores targets to a known version.

    Parameters
    ----------
    store, executor, verifier, registry:
        Collaborators shared with the deploy path.
    timeout:
        Overall deadline for the remote command sequence.
    verify_timeout:
        How long the restored version has to report healthy.
    """

    def __init__(
        self,
        store: VersionedArtifactStore,
        executor: RemoteExecutor,
        verifier: HealthVerifier,
        registry: TargetRegistry,
        *,
        timeout: float = 300.0,
        verify_timeout: float = 30.0,
    ) -> None:
        self._store = store
        self._executor = executor
        self._verifier = verifier
        self._registry = registry
        self._timeout = timeout
        self._verify_timeout = verify_timeout

    def rollback(
        self,
        target: DeploymentTarget,
        artifact: Artifact,
        credential: CredentialHandle,
        *,
        run_id: str,
    ) -> RollbackOutcome:
        """Put *artifact* back on *target*.  Must be called under the target lock."""
        logger.warning("[%s] rolling back to %s (run %s)", target.name, artifact.version, run_id)

        try:
            local_path = self._store.path_for(artifact.version)
        except (ArtifactNotFoundError, ArtifactIntegrityError) as exc:
            return self._exhausted(target, artifact, f"prior artifact unusable: {exc}")

        try:
            report = self._executor.execute(
                target,
                credential,
                deploy_operations(target, artifact, local_path),
                timeout=self._timeout,
            )
        except ConnectionFailure as exc:
            return self._exhausted(
                target, artifact, f"connection lost during rollback: {exc}", report=exc.report
            )
        if not report.succeeded:
            failed = report.failed_result
            what = failed.operation.description if failed else "remote sequence"
            return self._exhausted(target, artifact, f"{what} failed during rollback", report=report)

        health = self._verifier.verify(
            target, credential, artifact.version, self._verify_timeout
        )
        if not health.healthy:
            return self._exhausted(
                target,
                artifact,
                f"restored {artifact.version} is {health.status.value}: {health.detail}",
                report=report,
                health=health,
            )

        current = self._registry.get(target.name).active_version
        if current != artifact.version:
            try:
                self._registry.compare_and_set_active(
                    target.name, current, artifact.version, run_id=run_id, reason="rollback"
                )
            except ActiveVersionConflict as exc:
                return self._exhausted(
                    target, artifact, str(exc), report=report, health=health
                )

        logger.info("[%s] rollback to %s verified", target.name, artifact.version)
        return RollbackOutcome(
            succeeded=True,
            version=artifact.version,
            detail=f"restored {artifact.version}",
            report=report,
            health=health,
        )

    @staticmethod
    def _exhausted(
        target: DeploymentTarget,
        artifact: Artifact,
        detail: str,
        *,
        report: ExecutionReport | None = None,
        health: HealthOutcome | None = None,
    ) -> RollbackOutcome:
        logger.error("[%s] rollback exhausted: %s", target.name, detail)
        return RollbackOutcome(
            succeeded=False,
            version=artifact.version,
            exhausted=True,
            detail=detail,
            report=report,
            health=health,
        )
