"""Typed remote operations and their results.

The remote vocabulary is closed: transfer, stop, install, start, and health
query.  Each operation is checked individually so a report can say exactly
which step failed.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class RemoteOpKind(str, Enum):
    TRANSFER_ARTIFACT = "transfer_artifact"
    STOP_SERVICE = "stop_service"
    INSTALL_ARTIFACT = "install_artifact"
    START_SERVICE = "start_service"
    QUERY_HEALTH = "query_health"


# Operations that change what the target is running.
MUTATING_KINDS: frozenset[RemoteOpKind] = frozenset({
    RemoteOpKind.TRANSFER_ARTIFACT,
    RemoteOpKind.STOP_SERVICE,
    RemoteOpKind.INSTALL_ARTIFACT,
    RemoteOpKind.START_SERVICE,
})


class RemoteOperation(BaseModel):
    """A single step sent to a target.

    ``command`` is the shell text run on the target (empty for transfers).
    It never contains secret material; credentials travel as handles.
    """

    model_config = ConfigDict(frozen=True)

    kind: RemoteOpKind
    description: str
    command: str = ""
    local_path: str | None = None  # transfer source
    remote_path: str | None = None  # transfer destination

    @property
    def display(self) -> str:
        if self.kind == RemoteOpKind.TRANSFER_ARTIFACT:
            return f"transfer {self.local_path} -> {self.remote_path}"
        return self.command


class CommandResult(BaseModel):
    """Outcome of one remote operation."""

    model_config = ConfigDict(frozen=True)

    operation: RemoteOperation
    exit_status: int | None  # None when the command timed out
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.exit_status == 0 and not self.timed_out


class ExecutionReport(BaseModel):
    """Per-command results of one ``RemoteExecutor.execute`` call.

    Execution stops at the first failure; ``results`` holds every command
    that was attempted, including the failing one.
    """

    model_config = ConfigDict(frozen=True)

    target: str
    results: list[CommandResult] = []
    planned: int = 0

    @property
    def succeeded(self) -> bool:
        return len(self.results) == self.planned and all(
            r.succeeded for r in self.results
        )

    @property
    def failed_result(self) -> CommandResult | None:
        for result in self.results:
            if not result.succeeded:
                return result
        return None

    @property
    def output(self) -> str:
        """Combined captured output, one block per command."""
        blocks = []
        for r in self.results:
            status = "timeout" if r.timed_out else f"exit {r.exit_status}"
            block = f"$ {r.operation.display} ({status})"
            if r.stdout:
                block += f"\n{r.stdout.rstrip()}"
            if r.stderr:
                block += f"\n{r.stderr.rstrip()}"
            blocks.append(block)
        return "\n".join(blocks)
