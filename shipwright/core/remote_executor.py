"""Remote executor: runs a bounded sequence of typed operations on a target.

Operations run strictly in order and execution stops at the first failure.
The returned ``ExecutionReport`` lists every attempted command, so partial
execution is reported, not hidden.  Connection problems raise
``ConnectionFailure`` instead of producing a report entry.

Transports:
1. ``SshTransport``: OpenSSH ``ssh``/``scp`` via subprocess, key file
   materialised by the run's secret scope.
2. ``LocalTransport``: same vocabulary against the local machine, for
   development and smoke tests.
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import time
from pathlib import Path
from typing import Protocol, runtime_checkable

from shipwright.core.errors import ConnectionFailure
from shipwright.core.vault import CredentialHandle, CredentialVault
from shipwright.models.artifacts import Artifact
from shipwright.models.remote import (
    CommandResult,
    ExecutionReport,
    RemoteOperation,
    RemoteOpKind,
)
from shipwright.models.targets import DeploymentTarget

logger = logging.getLogger(__name__)

# ssh reserves exit status 255 for its own errors.
_SSH_CONNECTION_EXIT = 255

_SCP_CONNECTION_MARKERS = (
    "connection refused",
    "connection timed out",
    "could not resolve hostname",
    "no route to host",
    "permission denied",
    "host key verification failed",
    "lost connection",
    "connection closed",
)


# ---------------------------------------------------------------------------
# Operation plans
# ---------------------------------------------------------------------------


def _render(template: str, **values: str) -> str:
    # Plain substitution: templates may carry literal braces (jq filters etc).
    for key, value in values.items():
        template = template.replace(
            f"{{{key}}}", shlex.quote(value) if key.endswith("path") else value
        )
    return template


def staged_path(target: DeploymentTarget, artifact: Artifact) -> str:
    """Where an artifact is staged on the target before installation."""
    return f"{target.service.staging_dir.rstrip('/')}/{artifact.version}-{artifact.name}"


def deploy_operations(
    target: DeploymentTarget, artifact: Artifact, local_path: Path
) -> list[RemoteOperation]:
    """The transfer/stop/install/start sequence for one artifact."""
    service = target.service
    remote_path = staged_path(target, artifact)
    values = {
        "service": service.name,
        "remote_path": remote_path,
        "install_path": service.install_path,
        "version": artifact.version,
    }
    return [
        RemoteOperation(
            kind=RemoteOpKind.TRANSFER_ARTIFACT,
            description=f"transfer {artifact.version}",
            local_path=str(local_path),
            remote_path=remote_path,
        ),
        RemoteOperation(
            kind=RemoteOpKind.STOP_SERVICE,
            description=f"stop {service.name}",
            command=_render(service.stop_command, **values),
        ),
        RemoteOperation(
            kind=RemoteOpKind.INSTALL_ARTIFACT,
            description=f"install {artifact.version}",
            command=_render(service.install_command, **values),
        ),
        RemoteOperation(
            kind=RemoteOpKind.START_SERVICE,
            description=f"start {service.name}",
            command=_render(service.start_command, **values),
        ),
    ]


def health_operation(target: DeploymentTarget) -> RemoteOperation:
    return RemoteOperation(
        kind=RemoteOpKind.QUERY_HEALTH,
        description=f"query health of {target.service.name}",
        command=_render(target.service.health_command, service=target.service.name),
    )


# ---------------------------------------------------------------------------
# Transports
# ---------------------------------------------------------------------------


@runtime_checkable
class Transport(Protocol):
    """Performs one operation against a target.

    Must raise ``ConnectionFailure`` when the target cannot be reached or
    rejects authentication, and return a ``CommandResult`` otherwise.
    """

    def perform(
        self,
        target: DeploymentTarget,
        credential: CredentialHandle,
        operation: RemoteOperation,
        timeout: float,
    ) -> CommandResult:
        ...


class SshTransport:
    """OpenSSH transport using key files from the run's secret scope.

    Parameters
    ----------
    vault:
        Resolves credential handles to their live scope.
    connect_timeout:
        Seconds passed to ``-o ConnectTimeout``.
    strict_host_key_checking:
        Verify host keys against *known_hosts_path* (required in production).
    """

    def __init__(
        self,
        vault: CredentialVault,
        *,
        connect_timeout: int = 10,
        strict_host_key_checking: bool = False,
        known_hosts_path: Path | None = None,
    ) -> None:
        self._vault = vault
        self._connect_timeout = connect_timeout
        self._strict = strict_host_key_checking
        self._known_hosts = known_hosts_path

    def _ssh_options(self, key_file: Path) -> list[str]:
        known_hosts = str(self._known_hosts) if self._known_hosts else (
            "~/.ssh/known_hosts" if self._strict else "/dev/null"
        )
        return [
            "-i", str(key_file),
            "-o", "BatchMode=yes",
            "-o", "IdentitiesOnly=yes",
            "-o", f"ConnectTimeout={self._connect_timeout}",
            "-o", f"StrictHostKeyChecking={'yes' if self._strict else 'no'}",
            "-o", f"UserKnownHostsFile={known_hosts}",
        ]

    def build_ssh_cmd(
        self, target: DeploymentTarget, key_file: Path, remote_command: str
    ) -> list[str]:
        return [
            "ssh",
            *self._ssh_options(key_file),
            "-p", str(target.port),
            target.address,
            remote_command,
        ]

    def build_scp_cmd(
        self, target: DeploymentTarget, key_file: Path, local_path: str, remote_path: str
    ) -> list[str]:
        return [
            "scp",
            *self._ssh_options(key_file),
            "-P", str(target.port),
            local_path,
            f"{target.address}:{remote_path}",
        ]

    def perform(
        self,
        target: DeploymentTarget,
        credential: CredentialHandle,
        operation: RemoteOperation,
        timeout: float,
    ) -> CommandResult:
        key_file = self._vault.scope_for(credential).key_file(credential)
        started = time.monotonic()

        if operation.kind == RemoteOpKind.TRANSFER_ARTIFACT:
            staging = str(Path(operation.remote_path or "").parent)
            mkdir = self._run(
                self.build_ssh_cmd(target, key_file, f"mkdir -p {shlex.quote(staging)}"),
                timeout,
            )
            if mkdir is None:
                return self._timed_out(operation, started)
            self._raise_on_connection_error(target, mkdir, ssh=True)
            if mkdir.returncode != 0:
                return self._result(operation, mkdir, started)
            remaining = max(timeout - (time.monotonic() - started), 0.001)
            argv = self.build_scp_cmd(
                target, key_file, operation.local_path or "", operation.remote_path or ""
            )
            completed = self._run(argv, remaining)
            if completed is None:
                return self._timed_out(operation, started)
            self._raise_on_connection_error(target, completed, ssh=False)
        else:
            completed = self._run(
                self.build_ssh_cmd(target, key_file, operation.command), timeout
            )
            if completed is None:
                return self._timed_out(operation, started)
            self._raise_on_connection_error(target, completed, ssh=True)

        return self._result(operation, completed, started)

    @staticmethod
    def _run(argv: list[str], timeout: float) -> subprocess.CompletedProcess | None:
        try:
            return subprocess.run(
                argv, capture_output=True, text=True, timeout=timeout, stdin=subprocess.DEVNULL
            )
        except subprocess.TimeoutExpired:
            return None
        except OSError as exc:
            raise ConnectionFailure(f"Could not start {argv[0]}: {exc}") from exc

    @staticmethod
    def _raise_on_connection_error(
        target: DeploymentTarget, completed: subprocess.CompletedProcess, *, ssh: bool
    ) -> None:
        stderr = (completed.stderr or "").strip()
        if ssh and completed.returncode == _SSH_CONNECTION_EXIT:
            raise ConnectionFailure(
                f"Cannot reach {target.name} ({target.host}): {stderr or 'ssh exit 255'}",
                target=target.name,
            )
        if not ssh and completed.returncode != 0:
            lowered = stderr.lower()
            if any(marker in lowered for marker in _SCP_CONNECTION_MARKERS):
                raise ConnectionFailure(
                    f"Cannot reach {target.name} ({target.host}): {stderr}",
                    target=target.name,
                )

    @staticmethod
    def _result(
        operation: RemoteOperation, completed: subprocess.CompletedProcess, started: float
    ) -> CommandResult:
        return CommandResult(
            operation=operation,
            exit_status=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            duration_seconds=time.monotonic() - started,
        )

    @staticmethod
    def _timed_out(operation: RemoteOperation, started: float) -> CommandResult:
        return CommandResult(
            operation=operation,
            exit_status=None,
            timed_out=True,
            stderr="command timed out",
            duration_seconds=time.monotonic() - started,
        )


class LocalTransport:
    """Runs operations on this machine (``bash -c`` and file copies).

    Useful for trying a pipeline definition before pointing it at a host.
    Credentials are accepted and ignored.
    """

    def perform(
        self,
        target: DeploymentTarget,
        credential: CredentialHandle,
        operation: RemoteOperation,
        timeout: float,
    ) -> CommandResult:
        started = time.monotonic()
        if operation.kind == RemoteOpKind.TRANSFER_ARTIFACT:
            destination = Path(operation.remote_path or "")
            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(operation.local_path or "", destination)
            except OSError as exc:
                return CommandResult(
                    operation=operation,
                    exit_status=1,
                    stderr=str(exc),
                    duration_seconds=time.monotonic() - started,
                )
            return CommandResult(
                operation=operation,
                exit_status=0,
                duration_seconds=time.monotonic() - started,
            )

        try:
            completed = subprocess.run(
                ["bash", "-c", operation.command],
                capture_output=True,
                text=True,
                timeout=timeout,
                stdin=subprocess.DEVNULL,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                operation=operation,
                exit_status=None,
                timed_out=True,
                stderr="command timed out",
                duration_seconds=time.monotonic() - started,
            )
        return CommandResult(
            operation=operation,
            exit_status=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
            duration_seconds=time.monotonic() - started,
        )


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class RemoteExecutor:
    """Runs ordered operation lists under a caller-supplied deadline.

    Parameters
    ----------
    transport:
        The channel to targets.
    vault:
        Optional; when given, captured output is redacted against the
        secrets held by the credential's scope.
    """

    def __init__(self, transport: Transport, vault: CredentialVault | None = None) -> None:
        self._transport = transport
        self._vault = vault

    def execute(
        self,
        target: DeploymentTarget,
        credential: CredentialHandle,
        operations: list[RemoteOperation],
        timeout: float,
    ) -> ExecutionReport:
        """Run *operations* in order, stopping at the first failure.

        *timeout* is an overall deadline shared by the whole sequence.
        Raises ``ConnectionFailure`` (carrying the partial report) if the
        target becomes unreachable.
        """
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        deadline = time.monotonic() + timeout
        results: list[CommandResult] = []

        for operation in operations:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                results.append(
                    CommandResult(
                        operation=operation,
                        exit_status=None,
                        timed_out=True,
                        stderr="deadline exceeded before the command started",
                    )
                )
                logger.warning("[%s] deadline exceeded before %r", target.name, operation.description)
                break

            logger.info("[%s] %s", target.name, operation.display)
            try:
                result = self._transport.perform(target, credential, operation, remaining)
            except ConnectionFailure as exc:
                report = ExecutionReport(
                    target=target.name, results=results, planned=len(operations)
                )
                logger.error("[%s] connection failure: %s", target.name, exc)
                raise ConnectionFailure(
                    str(exc), target=target.name, report=report
                ) from exc

            result = self._redact(credential, result)
            results.append(result)
            if not result.succeeded:
                logger.warning(
                    "[%s] %s failed (%s): %s",
                    target.name,
                    operation.description,
                    "timeout" if result.timed_out else f"exit {result.exit_status}",
                    result.stderr.strip()[:200],
                )
                break

        return ExecutionReport(target=target.name, results=results, planned=len(operations))

    def _redact(self, credential: CredentialHandle, result: CommandResult) -> CommandResult:
        if self._vault is None:
            return result
        scope = self._vault.scope_for(credential)
        return result.model_copy(
            update={
                "stdout": scope.redact(result.stdout),
                "stderr": scope.redact(result.stderr),
            }
        )
