"""Test stage: exit status 0 from the external test runner means pass."""

from __future__ import annotations

import logging
import subprocess
from typing import Any, ClassVar, Protocol, runtime_checkable

from shipwright.core.errors import TestFailure
from shipwright.models.config import TestSpec
from shipwright.models.runs import StageName
from shipwright.stages.base import BaseStage, StageContext
from shipwright.stages.build import _partial_output, _tail, revision_env

logger = logging.getLogger(__name__)


@runtime_checkable
class TestRunner(Protocol):
    """Runs the suite for a revision; returns its output or raises ``TestFailure``."""

    def run(self, revision: str) -> str:
        ...


class CommandTestRunner:
    __test__ = False  # not a pytest class

    def __init__(self, spec: TestSpec) -> None:
        self._spec = spec

    def run(self, revision: str) -> str:
        argv = [arg.replace("{revision}", revision) for arg in self._spec.command]
        logger.info("Testing %s: %s", revision, " ".join(argv))
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
            raise TestFailure(
                f"Tests timed out after {self._spec.timeout_seconds:g}s",
                output=_tail(_partial_output(exc.stdout)),
            ) from exc
        except OSError as exc:
            raise TestFailure(f"Could not start test command: {exc}") from exc

        output = _tail(completed.stdout + completed.stderr)
        if completed.returncode != 0:
            raise TestFailure(f"Tests exited {completed.returncode}", output=output)
        return output


class TestStage(BaseStage):
    """Stage 2: Test."""

    __test__ = False  # not a pytest class

    name: ClassVar[StageName] = StageName.TEST

    def __init__(self, runner: TestRunner) -> None:
        self._runner = runner

    def execute(self, ctx: StageContext) -> dict[str, Any]:
        return {"output": self._runner.run(ctx.revision)}
