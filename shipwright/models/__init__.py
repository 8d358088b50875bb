"""Shipwright data models: Pydantic v2, frozen (immutable)."""

from shipwright.models.artifacts import Artifact
from shipwright.models.config import BuildSpec, PipelineConfig, TestSpec, load_pipeline_config
from shipwright.models.health import HealthOutcome, HealthStatus, ProbeResult, ProbeStatus
from shipwright.models.ledger import LedgerEntry
from shipwright.models.remote import (
    MUTATING_KINDS,
    CommandResult,
    ExecutionReport,
    RemoteOperation,
    RemoteOpKind,
)
from shipwright.models.runs import (
    RUN_TRANSITIONS,
    TERMINAL_STATUSES,
    ErrorDetail,
    FailureKind,
    PipelineRun,
    RunStatus,
    StageName,
    StageResult,
    StageStatus,
)
from shipwright.models.targets import Activation, DeploymentTarget, ServiceSpec

__all__ = [
    # artifacts
    "Artifact",
    # config
    "BuildSpec",
    "TestSpec",
    "PipelineConfig",
    "load_pipeline_config",
    # targets
    "ServiceSpec",
    "DeploymentTarget",
    "Activation",
    # remote
    "RemoteOpKind",
    "MUTATING_KINDS",
    "RemoteOperation",
    "CommandResult",
    "ExecutionReport",
    # health
    "HealthStatus",
    "ProbeStatus",
    "ProbeResult",
    "HealthOutcome",
    # runs
    "RunStatus",
    "RUN_TRANSITIONS",
    "TERMINAL_STATUSES",
    "StageName",
    "StageStatus",
    "FailureKind",
    "ErrorDetail",
    "StageResult",
    "PipelineRun",
    # ledger
    "LedgerEntry",
]
