"""Pipeline runner: the central coordinator for Shipwright runs.

The runner wires together the artifact store, credential vault, remote
executor, health verifier, rollback controller, target registry and run
ledger, and drives one run through

    build -> test -> package -> deploy -> verify

with fail-fast semantics.  The outcome branches are explicit:

- build/test/package failure: ``failed``; nothing touched the target.
- deploy failure: ``failed``; the prior version's health is re-checked and
  the run is flagged ``inconsistent`` if it is not serving.  A command
  failure (the target was reached and may be half-changed) with an
  unhealthy prior version goes through rollback, as does a connection
  lost mid-sequence while the target still answers health queries.
- verify failure: rollback; ``rolled_back`` on success, else ``failed``
  with ``escalated`` set.

Deploy, verify and rollback run under the per-target lock.  Cancellation is
checked between stages and is only honored before deploy starts.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone

from shipwright.config import ProdConfig
from shipwright.core.artifact_store import VersionedArtifactStore
from shipwright.core.errors import FailureKind
from shipwright.core.health import HealthProbe, HealthVerifier, RemoteHealthProbe
from shipwright.core.production_guard import enforce_production_constraints
from shipwright.core.remote_executor import RemoteExecutor, SshTransport, Transport
from shipwright.core.rollback import RollbackController, RollbackOutcome
from shipwright.core.run_ledger import RunLedger
from shipwright.core.run_machine import RunStateMachine
from shipwright.core.target_lock import TargetLockManager, TargetLockTimeout
from shipwright.core.target_registry import TargetRegistry
from shipwright.core.vault import (
    CredentialVault,
    EnvSecretSource,
    FileSecretSource,
    SecretNotFoundError,
)
from shipwright.models.config import PipelineConfig
from shipwright.models.health import HealthOutcome, HealthStatus
from shipwright.models.runs import (
    ErrorDetail,
    PipelineRun,
    RunStatus,
    StageName,
    StageResult,
    StageStatus,
)
from shipwright.models.targets import DeploymentTarget
from shipwright.stages import (
    STAGE_ORDER,
    BaseStage,
    Builder,
    BuildStage,
    CommandBuilder,
    CommandTestRunner,
    DeployStage,
    PackageStage,
    RollbackStage,
    StageContext,
    TestRunner,
    TestStage,
    VerifyStage,
)

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation flag, checked between stages."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def new_run_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"sw-{ts}-{uuid.uuid4().hex[:6]}"


def default_vault(prod_config: ProdConfig) -> CredentialVault:
    """Secrets directory when configured, else ``SHIPWRIGHT_SECRET_*`` env vars."""
    if prod_config.secrets_dir is not None:
        return CredentialVault(FileSecretSource(prod_config.secrets_dir))
    return CredentialVault(EnvSecretSource(prod_config.secret_env_prefix))


class PipelineRunner:
    """Runs the deployment pipeline for one project.

    Every collaborator defaults to the production implementation built from
    *prod_config*; tests inject doubles.

    Parameters
    ----------
    pipeline:
        The project's pipeline definition.
    prod_config:
        Runtime settings (paths, timeouts).  Uses the environment if omitted.
    """

    def __init__(
        self,
        pipeline: PipelineConfig,
        *,
        prod_config: ProdConfig | None = None,
        store: VersionedArtifactStore | None = None,
        vault: CredentialVault | None = None,
        transport: Transport | None = None,
        registry: TargetRegistry | None = None,
        ledger: RunLedger | None = None,
        builder: Builder | None = None,
        test_runner: TestRunner | None = None,
        probe: HealthProbe | None = None,
        verifier: HealthVerifier | None = None,
        locks: TargetLockManager | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.settings = prod_config or ProdConfig()

        # Fails hard if production constraints are violated
        enforce_production_constraints(self.settings)

        s = self.settings
        self.store = store or VersionedArtifactStore(s.artifact_store_path)
        self.vault = vault or default_vault(s)
        self.registry = registry or TargetRegistry(s.registry_path)
        self.ledger = ledger or RunLedger(s.ledger_path)
        self.locks = locks or TargetLockManager(self.registry, lease_ttl=s.lease_ttl_seconds)

        transport = transport or SshTransport(
            self.vault,
            connect_timeout=s.connect_timeout_seconds,
            strict_host_key_checking=s.strict_host_key_checking,
            known_hosts_path=s.known_hosts_path,
        )
        self.executor = RemoteExecutor(transport, self.vault)
        self.probe = probe or RemoteHealthProbe(self.executor)
        self.verifier = verifier or HealthVerifier(
            self.probe,
            interval=s.health_interval_seconds,
            max_inconclusive=s.health_max_inconclusive,
            probe_timeout=s.connect_timeout_seconds + 5,
        )
        self.rollback_controller = RollbackController(
            self.store,
            self.executor,
            self.verifier,
            self.registry,
            timeout=s.remote_timeout_seconds,
            verify_timeout=s.health_timeout_seconds,
        )

        self._stages: dict[StageName, BaseStage] = {
            StageName.BUILD: BuildStage(builder or CommandBuilder(pipeline.build)),
            StageName.TEST: TestStage(test_runner or CommandTestRunner(pipeline.test)),
            StageName.PACKAGE: PackageStage(self.store),
            StageName.DEPLOY: DeployStage(
                self.store,
                self.executor,
                self.registry,
                self.probe,
                timeout=s.remote_timeout_seconds,
                probe_timeout=s.recheck_timeout_seconds,
            ),
            StageName.VERIFY: VerifyStage(self.verifier, timeout=s.health_timeout_seconds),
            StageName.ROLLBACK: RollbackStage(self.rollback_controller, self.store),
        }

    # ------------------------------------------------------------------
    # Targets
    # ------------------------------------------------------------------

    def sync_targets(self) -> list[DeploymentTarget]:
        """Register every configured target; committed active versions are kept."""
        return [self.registry.register(t) for t in self.pipeline.targets]

    def resolve_target(self, name: str | None = None) -> DeploymentTarget:
        return self.registry.register(self.pipeline.get_target(name))

    def rollback_to(self, target_name: str | None, version: str) -> RollbackOutcome:
        """Operator-triggered rollback of a target to a stored *version*.

        Takes the target lock like a pipeline run; the activation is recorded
        with a ``manual-`` run id.
        """
        target = self.resolve_target(target_name)
        artifact = self.store.get(version)
        run_id = f"manual-{uuid.uuid4().hex[:8]}"
        with self.vault.acquire([target.credential_ref]) as scope, self.locks.hold(
            target.name, run_id, self.settings.lock_timeout_seconds
        ):
            return self.rollback_controller.rollback(
                self.registry.get(target.name),
                artifact,
                scope.handle(target.credential_ref),
                run_id=run_id,
            )

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def run_pipeline(
        self,
        revision: str,
        target_name: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> PipelineRun:
        """Run build -> test -> package -> deploy -> verify for *revision*.

        Always returns a terminal ``PipelineRun``; the same record is in the
        run ledger.
        """
        cancel = cancel or CancellationToken()
        target = self.resolve_target(target_name)
        machine = RunStateMachine(new_run_id(), revision, target.name, self.ledger)
        logger.info("Run %s: %s -> %s", machine.run_id, revision, target.name)

        try:
            with self.vault.acquire([target.credential_ref]) as scope:
                machine.transition(RunStatus.RUNNING)
                ctx = StageContext(
                    run=machine.snapshot(),
                    target=target,
                    credential=scope.handle(target.credential_ref),
                )
                self._drive(machine, ctx, cancel)
        except SecretNotFoundError as exc:
            if machine.status != RunStatus.PENDING:
                raise
            logger.error("Run %s: %s", machine.run_id, exc)
            self._skip(machine, STAGE_ORDER, reason=f"not started: {exc}")
            return machine.transition(RunStatus.FAILED)

        run = machine.snapshot()
        log = logger.info if run.status == RunStatus.SUCCEEDED else logger.warning
        log(
            "Run %s finished %s (candidate=%s prior=%s escalated=%s inconsistent=%s)",
            run.run_id, run.status.value, run.candidate_version, run.prior_version,
            run.escalated, run.inconsistent,
            extra={"run": run.model_dump(mode="json")},
        )
        return run

    def _drive(
        self, machine: RunStateMachine, ctx: StageContext, cancel: CancellationToken
    ) -> None:
        # Local stages: no remote side effects, cancellable.
        local = [StageName.BUILD, StageName.TEST, StageName.PACKAGE]
        for i, stage in enumerate(local):
            if cancel.cancelled:
                self._cancel(machine, STAGE_ORDER[i:])
                return
            result = self._run(machine, stage, ctx)
            if stage == StageName.PACKAGE and result.succeeded and ctx.artifact:
                machine.annotate(candidate_version=ctx.artifact.version)
            if not result.succeeded:
                self._skip(machine, STAGE_ORDER[i + 1:])
                machine.transition(RunStatus.FAILED)
                return

        if cancel.cancelled:
            self._cancel(machine, [StageName.DEPLOY, StageName.VERIFY])
            return

        try:
            with self.locks.hold(
                ctx.target.name, machine.run_id, self.settings.lock_timeout_seconds
            ):
                status = self._deploy_and_verify(machine, ctx)
        except TargetLockTimeout as exc:
            logger.error("Run %s: %s", machine.run_id, exc)
            now = datetime.now(timezone.utc)
            machine.append(
                StageResult(
                    stage=StageName.DEPLOY,
                    status=StageStatus.FAILURE,
                    started_at=now,
                    finished_at=now,
                    error=ErrorDetail(kind=FailureKind.INTERNAL, message=str(exc)),
                )
            )
            self._skip(machine, [StageName.VERIFY])
            machine.transition(RunStatus.FAILED)
            return

        # A cancel that arrived once deploy had started is recorded, not honored.
        if cancel.cancelled:
            machine.annotate(cancelled=True)
        machine.transition(status)

    def _deploy_and_verify(self, machine: RunStateMachine, ctx: StageContext) -> RunStatus:
        """Deploy, verify and recover; returns the run's final status."""
        deploy = self._run(machine, StageName.DEPLOY, ctx)
        machine.annotate(prior_version=ctx.prior_version)
        if not deploy.succeeded:
            self._skip(machine, [StageName.VERIFY])
            self._recover_from_deploy(machine, ctx, deploy)
            return RunStatus.FAILED

        verify = self._run(machine, StageName.VERIFY, ctx)
        if verify.succeeded:
            return RunStatus.SUCCEEDED

        rollback = self._run(machine, StageName.ROLLBACK, ctx)
        if rollback.succeeded:
            return RunStatus.ROLLED_BACK
        logger.error(
            "Run %s: rollback exhausted on %s; manual intervention required",
            machine.run_id, ctx.target.name,
        )
        machine.annotate(escalated=True)
        return RunStatus.FAILED

    def _recover_from_deploy(
        self, machine: RunStateMachine, ctx: StageContext, deploy: StageResult
    ) -> None:
        """Decide whether a failed deploy left the target in a bad state.

        A connection lost before any command finished leaves the target as
        it was.  One lost mid-sequence is treated like a failed command
        when the recheck can still reach the target, so the prior version
        is restored; if the target cannot be reached at all the run is
        marked inconsistent.
        """
        kind = deploy.error.kind if deploy.error else FailureKind.INTERNAL
        prior = ctx.prior_version
        changed = kind != FailureKind.CONNECTION or ctx.completed_commands > 0

        if prior is None:
            if ctx.deployed and changed:
                logger.warning(
                    "Run %s: %s had no prior version and a partial deploy",
                    machine.run_id, ctx.target.name,
                )
                machine.annotate(inconsistent=True)
            return
        if not ctx.deployed:
            return

        health = self._recheck(machine, ctx, prior)
        if health.healthy:
            logger.info("Run %s: %s still healthy at %s", machine.run_id, ctx.target.name, prior)
            return

        logger.warning(
            "Run %s: %s not healthy at %s after failed deploy: %s",
            machine.run_id, ctx.target.name, prior, health.detail,
        )
        if kind == FailureKind.CONNECTION and (
            not changed or health.status == HealthStatus.INCONCLUSIVE
        ):
            machine.annotate(inconsistent=True)
            return

        rollback = self._run(machine, StageName.ROLLBACK, ctx)
        if rollback.succeeded:
            return
        logger.error(
            "Run %s: rollback exhausted on %s; manual intervention required",
            machine.run_id, ctx.target.name,
        )
        machine.annotate(inconsistent=True, escalated=True)

    def _recheck(
        self, machine: RunStateMachine, ctx: StageContext, prior: str
    ) -> HealthOutcome:
        try:
            return self.verifier.verify(
                ctx.target, ctx.credential, prior, self.settings.recheck_timeout_seconds
            )
        except Exception as exc:
            logger.exception(
                "Run %s: health recheck of %s crashed", machine.run_id, ctx.target.name
            )
            return HealthOutcome(
                status=HealthStatus.INCONCLUSIVE,
                expected_version=prior,
                detail=f"recheck failed: {type(exc).__name__}: {exc}",
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _run(self, machine: RunStateMachine, name: StageName, ctx: StageContext) -> StageResult:
        machine.enter_stage(name)
        ctx.run = machine.snapshot()
        result = self._stages[name].run_stage(ctx)
        machine.append(result)
        return result

    @staticmethod
    def _skip(
        machine: RunStateMachine, stages: list[StageName], reason: str = ""
    ) -> None:
        for stage in stages:
            machine.append(
                StageResult(stage=stage, status=StageStatus.SKIPPED, output=reason)
            )

    def _cancel(self, machine: RunStateMachine, remaining: list[StageName]) -> None:
        logger.warning("Run %s cancelled before %s", machine.run_id, remaining[0].value)
        self._skip(machine, remaining, reason="cancelled")
        machine.annotate(cancelled=True)
        machine.transition(RunStatus.FAILED)
