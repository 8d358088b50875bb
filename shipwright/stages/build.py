"""Build stage.

Runs the project's external build command and checks that it left exactly
the artifact file the pipeline definition promises.  The build tool itself
is a black box: exit status 0 plus a file on disk is the whole contract.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar, Protocol, runtime_checkable

from shipwright.core.errors import BuildFailure
from shipwright.models.config import BuildSpec
from shipwright.models.runs import StageName
from shipwright.stages.base import BaseStage, StageContext

logger = logging.getLogger(__name__)

_OUTPUT_TAIL = 4000


def _tail(text: str) -> str:
    return text if len(text) <= _OUTPUT_TAIL else "..." + text[-_OUTPUT_TAIL:]


def _partial_output(value: str | bytes | None) -> str:
    """Output captured before a timeout; may be bytes even in text mode."""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value or ""


def revision_env(revision: str) -> dict[str, str]:
    """Environment for build and test subprocesses."""
    env = dict(os.environ)
    env["SHIPWRIGHT_REVISION"] = revision
    return env


@dataclass(frozen=True)
class BuildProduct:
    path: Path
    output: str = ""


@runtime_checkable
class Builder(Protocol):
    """Turns a revision into one artifact file, or raises ``BuildFailure``."""

    def build(self, revision: str) -> BuildProduct:
        ...


class CommandBuilder:
    """Runs ``BuildSpec.command`` in ``BuildSpec.workdir``.

    ``{revision}`` in the command arguments and in ``artifact_path`` is
    replaced with the triggering revision, which is also exported as
    ``SHIPWRIGHT_REVISION``.
    """

    def __init__(self, spec: BuildSpec) -> None:
        self._spec = spec

    def artifact_path(self, revision: str) -> Path:
        path = Path(self._spec.artifact_path.replace("{revision}", revision))
        return path if path.is_absolute() else self._spec.workdir / path

    def build(self, revision: str) -> BuildProduct:
        argv = [arg.replace("{revision}", revision) for arg in self._spec.command]
        logger.info("Building %s: %s", revision, " ".join(argv))
        try:
            completed = subprocess.run(
                argv,
                cwd=self._spec.workdir,
                env=revision_env(revision),
                capture_output=True,
                text=True,
                timeout=self._spec.timeout_seconds,
                stdin=subprocess.DEVNULL,
            )
        except subprocess.TimeoutExpired as exc:
            raise BuildFailure(
                f"Build timed out after {self._spec.timeout_seconds:g}s",
                output=_tail(_partial_output(exc.stdout)),
            ) from exc
        except OSError as exc:
            raise BuildFailure(f"Could not start build command: {exc}") from exc

        output = _tail(completed.stdout + completed.stderr)
        if completed.returncode != 0:
            raise BuildFailure(f"Build exited {completed.returncode}", output=output)

        path = self.artifact_path(revision)
        if not path.is_file():
            raise BuildFailure(f"Build succeeded but produced no artifact at {path}", output=output)
        return BuildProduct(path=path, output=output)


class BuildStage(BaseStage):
    """Stage 1: Build."""

    name: ClassVar[StageName] = StageName.BUILD

    def __init__(self, builder: Builder) -> None:
        self._builder = builder

    def execute(self, ctx: StageContext) -> dict[str, Any]:
        product = self._builder.build(ctx.revision)
        ctx.build_path = product.path
        return {"artifact_path": str(product.path), "output": product.output}
