"""Pipeline error taxonomy.

Every failure a stage can produce is a ``PipelineError`` carrying a
``FailureKind``.  ``BaseStage.run_stage`` turns these into failed
``StageResult`` records; nothing is swallowed.

The split that matters most is between ``ConnectionFailure`` (could not even
attempt: remote state unchanged) and ``RemoteCommandFailure`` (attempted and
failed: remote state may be partially changed).
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shipwright.models.remote import CommandResult, ExecutionReport


class FailureKind(str, Enum):
    BUILD = "build_failure"
    TEST = "test_failure"
    PACKAGE = "package_failure"
    CONNECTION = "connection_failure"
    REMOTE_COMMAND = "remote_command_failure"
    VERIFICATION = "verification_failure"
    ROLLBACK = "rollback_failure"
    INTERNAL = "internal_error"


class PipelineError(RuntimeError):
    """Base class for failures recorded into a stage result."""

    kind: FailureKind = FailureKind.INTERNAL

    def __init__(self, message: str, *, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class BuildFailure(PipelineError):
    kind = FailureKind.BUILD


class TestFailure(PipelineError):
    __test__ = False  # not a pytest class

    kind = FailureKind.TEST


class PackageFailure(PipelineError):
    kind = FailureKind.PACKAGE


class ConnectionFailure(PipelineError):
    """Could not reach or authenticate to the target.

    ``report`` holds any commands that completed before the connection was
    lost.  When it is empty the remote state is guaranteed unchanged.
    """

    kind = FailureKind.CONNECTION

    def __init__(
        self,
        message: str,
        *,
        target: str = "",
        report: ExecutionReport | None = None,
    ) -> None:
        super().__init__(message, output=report.output if report else "")
        self.target = target
        self.report = report

    @property
    def state_unchanged(self) -> bool:
        return self.report is None or not self.report.results


class RemoteCommandFailure(PipelineError):
    """The target was reached and a command returned failure."""

    kind = FailureKind.REMOTE_COMMAND

    def __init__(self, message: str, *, report: ExecutionReport) -> None:
        super().__init__(message, output=report.output)
        self.report = report

    @property
    def failed(self) -> CommandResult | None:
        return self.report.failed_result

    @classmethod
    def from_report(cls, report: ExecutionReport) -> RemoteCommandFailure:
        failed = report.failed_result
        if failed is None:
            return cls(f"Remote execution on {report.target} incomplete", report=report)
        status = "timed out" if failed.timed_out else f"exited {failed.exit_status}"
        return cls(
            f"{failed.operation.description} on {report.target} {status}",
            report=report,
        )


class VerificationFailure(PipelineError):
    kind = FailureKind.VERIFICATION


class RollbackFailure(PipelineError):
    """Restoring the prior version failed.  Fatal, escalated, never retried."""

    kind = FailureKind.ROLLBACK


class ConfigError(ValueError):
    """Raised when the pipeline definition is missing or invalid."""
