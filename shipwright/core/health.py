"""Post-deploy health verification.

The verifier polls a probe at a fixed interval until one of:

- the service reports healthy *at the expected version* -> ``healthy``
- the service reports a definitive failure              -> ``unhealthy``
- the timeout elapses                                   -> ``unhealthy``
  (or ``inconclusive`` if the last polls could not reach the target)

A service that is up but still serving the old version keeps being polled;
that is the "restart succeeded but the new artifact never loaded" case.
Unreachable polls are retried up to ``max_inconclusive`` times in a row.
Callers treat ``inconclusive`` exactly like ``unhealthy``.
"""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from shipwright.core.errors import ConnectionFailure
from shipwright.core.remote_executor import RemoteExecutor, health_operation
from shipwright.core.vault import CredentialHandle
from shipwright.models.health import HealthOutcome, HealthStatus, ProbeResult, ProbeStatus
from shipwright.models.targets import DeploymentTarget

logger = logging.getLogger(__name__)

_HEALTHY_WORDS = {"ok", "healthy", "up", "pass", "passing", "ready", "serving"}
_UNHEALTHY_WORDS = {"unhealthy", "fail", "failed", "failing", "error", "down"}
_VERSION_RE = re.compile(r"""version["']?\s*[=:]\s*["']?([\w.\-+]+)""", re.IGNORECASE)


@runtime_checkable
class HealthProbe(Protocol):
    """One health observation of a target."""

    def probe(
        self, target: DeploymentTarget, credential: CredentialHandle, timeout: float
    ) -> ProbeResult:
        ...


class RemoteHealthProbe:
    """Runs the target's ``health_command`` through the remote executor.

    Exit 0 means the service answered; its output may be JSON
    (``{"status": "ok", "version": "v5"}``) or text containing
    ``version=v5``.  A non-zero exit means "not ready yet".
    """

    def __init__(self, executor: RemoteExecutor) -> None:
        self._executor = executor

    def probe(
        self, target: DeploymentTarget, credential: CredentialHandle, timeout: float
    ) -> ProbeResult:
        try:
            report = self._executor.execute(
                target, credential, [health_operation(target)], timeout=timeout
            )
        except ConnectionFailure as exc:
            return ProbeResult(status=ProbeStatus.UNREACHABLE, detail=str(exc))

        result = report.results[0]
        if result.timed_out:
            return ProbeResult(status=ProbeStatus.UNREACHABLE, detail="health query timed out")
        if result.exit_status != 0:
            return ProbeResult(
                status=ProbeStatus.STARTING,
                detail=f"health query exited {result.exit_status}: {result.stderr.strip()[:200]}",
            )
        return parse_health_output(result.stdout)


def parse_health_output(text: str) -> ProbeResult:
    """Interpret the body returned by a successful health query."""
    body = text.strip()
    try:
        data = json.loads(body)
        is_json = True
    except ValueError:
        data, is_json = None, False

    if isinstance(data, dict):
        status = str(data.get("status", "ok")).lower()
        version = data.get("version")
        version = str(version) if version is not None else None
        if status in _UNHEALTHY_WORDS:
            return ProbeResult(status=ProbeStatus.UNHEALTHY, version=version, detail=body[:200])
        if status in _HEALTHY_WORDS:
            return ProbeResult(status=ProbeStatus.HEALTHY, version=version, detail=body[:200])
        return ProbeResult(status=ProbeStatus.STARTING, version=version, detail=body[:200])
    if is_json:
        # A bare JSON value ("unhealthy", false, []) carries no version.
        word = data.lower() if isinstance(data, str) else ""
        if word in _UNHEALTHY_WORDS:
            return ProbeResult(status=ProbeStatus.UNHEALTHY, detail=body[:200])
        if word in _HEALTHY_WORDS:
            return ProbeResult(status=ProbeStatus.HEALTHY, detail=body[:200])
        return ProbeResult(status=ProbeStatus.STARTING, detail=body[:200])

    match = _VERSION_RE.search(body)
    return ProbeResult(
        status=ProbeStatus.HEALTHY,
        version=match.group(1) if match else None,
        detail=body[:200],
    )


class HealthVerifier:
    """Polls a probe until the target is healthy at the expected version.

    Parameters
    ----------
    probe:
        Where observations come from.
    interval:
        Seconds between polls.
    max_inconclusive:
        Consecutive unreachable polls tolerated before giving up.
    probe_timeout:
        Upper bound for a single poll.
    clock, sleep:
        Injectable for tests.
    """

    def __init__(
        self,
        probe: HealthProbe,
        *,
        interval: float = 2.0,
        max_inconclusive: int = 3,
        probe_timeout: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._probe = probe
        self._interval = interval
        self._max_inconclusive = max_inconclusive
        self._probe_timeout = probe_timeout
        self._clock = clock
        self._sleep = sleep

    def verify(
        self,
        target: DeploymentTarget,
        credential: CredentialHandle,
        expected_version: str,
        timeout: float,
    ) -> HealthOutcome:
        """Poll *target* for up to *timeout* seconds."""
        deadline = self._clock() + timeout
        polls = 0
        unreachable_streak = 0
        last: ProbeResult | None = None

        while True:
            remaining = max(deadline - self._clock(), 0.001)
            last = self._probe.probe(target, credential, min(remaining, self._probe_timeout))
            polls += 1
            logger.debug(
                "[%s] health poll %d: %s version=%s",
                target.name, polls, last.status.value, last.version,
            )

            if last.status == ProbeStatus.HEALTHY:
                if last.version is None or last.version == expected_version:
                    logger.info(
                        "[%s] healthy at %s after %d poll(s)", target.name, expected_version, polls
                    )
                    return HealthOutcome(
                        status=HealthStatus.HEALTHY,
                        expected_version=expected_version,
                        observed_version=last.version,
                        polls=polls,
                        detail=last.detail,
                    )
            elif last.status == ProbeStatus.UNHEALTHY:
                logger.warning("[%s] reported unhealthy: %s", target.name, last.detail)
                return HealthOutcome(
                    status=HealthStatus.UNHEALTHY,
                    expected_version=expected_version,
                    observed_version=last.version,
                    polls=polls,
                    detail=f"service reported unhealthy: {last.detail}",
                )

            if last.status == ProbeStatus.UNREACHABLE:
                unreachable_streak += 1
                if unreachable_streak > self._max_inconclusive:
                    logger.warning(
                        "[%s] unreachable for %d consecutive polls", target.name, unreachable_streak
                    )
                    return HealthOutcome(
                        status=HealthStatus.INCONCLUSIVE,
                        expected_version=expected_version,
                        polls=polls,
                        detail=f"target unreachable for {unreachable_streak} polls: {last.detail}",
                    )
            else:
                unreachable_streak = 0

            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            self._sleep(min(self._interval, remaining))
            if self._clock() >= deadline:
                break

        return self._timed_out(target, expected_version, timeout, polls, last)

    @staticmethod
    def _timed_out(
        target: DeploymentTarget,
        expected_version: str,
        timeout: float,
        polls: int,
        last: ProbeResult | None,
    ) -> HealthOutcome:
        if last is not None and last.status == ProbeStatus.UNREACHABLE:
            status = HealthStatus.INCONCLUSIVE
            detail = f"target unreachable at timeout ({timeout:g}s): {last.detail}"
        elif last is not None and last.status == ProbeStatus.HEALTHY:
            status = HealthStatus.UNHEALTHY
            detail = (
                f"serving {last.version} instead of {expected_version} "
                f"after {timeout:g}s"
            )
        else:
            status = HealthStatus.UNHEALTHY
            detail = f"not healthy within {timeout:g}s"
            if last is not None and last.detail:
                detail += f": {last.detail}"
        logger.warning("[%s] %s", target.name, detail)
        return HealthOutcome(
            status=status,
            expected_version=expected_version,
            observed_version=last.version if last else None,
            polls=polls,
            detail=detail,
        )
