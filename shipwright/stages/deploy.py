"""Deploy stage: ensure the target is running the candidate version.

Deploy is a convergence step, not an append.  If the committed active
version already equals the candidate and a probe confirms the service is
serving it, no mutating command is sent.  Otherwise the artifact is
transferred and the service is stopped, installed and started; only when
every command has succeeded does the active-version pointer move, by
compare-and-set against the value read at the start of the stage.

Must be run while the target lock is held.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar

from shipwright.core.artifact_store import VersionedArtifactStore
from shipwright.core.errors import ConnectionFailure, PackageFailure, RemoteCommandFailure
from shipwright.core.health import HealthProbe
from shipwright.core.remote_executor import RemoteExecutor, deploy_operations
from shipwright.core.target_registry import TargetRegistry
from shipwright.models.health import ProbeStatus
from shipwright.models.runs import StageName
from shipwright.stages.base import BaseStage, StageContext

logger = logging.getLogger(__name__)


class DeployStage(BaseStage):
    """Stage 4: Deploy.

    Parameters
    ----------
    store, executor, registry, probe:
        Collaborators.
    timeout:
        Overall deadline for the transfer/stop/install/start sequence.
    probe_timeout:
        Deadline for the "already running?" probe.
    """

    name: ClassVar[StageName] = StageName.DEPLOY

    def __init__(
        self,
        store: VersionedArtifactStore,
        executor: RemoteExecutor,
        registry: TargetRegistry,
        probe: HealthProbe,
        *,
        timeout: float = 300.0,
        probe_timeout: float = 10.0,
    ) -> None:
        self._store = store
        self._executor = executor
        self._registry = registry
        self._probe = probe
        self._timeout = timeout
        self._probe_timeout = probe_timeout

    def execute(self, ctx: StageContext) -> dict[str, Any]:
        artifact = ctx.artifact
        if artifact is None:
            raise PackageFailure("No packaged artifact to deploy")

        # Always the committed row, never the copy the run started with.
        committed = self._registry.get(ctx.target.name)
        ctx.target = committed
        ctx.prior_version = committed.active_version

        if committed.active_version == artifact.version:
            observed = self._probe.probe(committed, ctx.credential, self._probe_timeout)
            if observed.status == ProbeStatus.HEALTHY and observed.version in (
                None,
                artifact.version,
            ):
                logger.info(
                    "[%s] already running %s; nothing to deploy",
                    committed.name, artifact.version,
                )
                return {
                    "version": artifact.version,
                    "changed": False,
                    "output": f"{committed.name} already running {artifact.version}",
                }
            logger.info(
                "[%s] active version is %s but probe says %s; redeploying",
                committed.name, artifact.version, observed.status.value,
            )

        local_path = self._store.path_for(artifact.version)
        operations = deploy_operations(committed, artifact, local_path)
        ctx.deployed = True
        try:
            report = self._executor.execute(
                committed, ctx.credential, operations, timeout=self._timeout
            )
        except ConnectionFailure as exc:
            if not exc.state_unchanged:
                ctx.completed_commands = len(exc.report.results)
            raise
        ctx.completed_commands = len(report.results)
        if not report.succeeded:
            raise RemoteCommandFailure.from_report(report)

        if committed.active_version != artifact.version:
            ctx.target = self._registry.compare_and_set_active(
                committed.name,
                committed.active_version,
                artifact.version,
                run_id=ctx.run_id,
                reason="deploy",
            )
        return {
            "version": artifact.version,
            "previous_version": committed.active_version,
            "changed": True,
            "commands": [r.operation.display for r in report.results],
            "output": report.output,
        }
