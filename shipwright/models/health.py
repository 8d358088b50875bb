"""Health verification models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    INCONCLUSIVE = "inconclusive"


class ProbeStatus(str, Enum):
    """What a single poll observed."""

    HEALTHY = "healthy"  # serving, possibly at another version
    STARTING = "starting"  # reachable but not ready yet
    UNHEALTHY = "unhealthy"  # definitive failure signal
    UNREACHABLE = "unreachable"  # could not probe at all


class ProbeResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: ProbeStatus
    version: str | None = None
    detail: str = ""


class HealthOutcome(BaseModel):
    """Result of ``HealthVerifier.verify``."""

    model_config = ConfigDict(frozen=True)

    status: HealthStatus
    expected_version: str
    observed_version: str | None = None
    polls: int = 0
    detail: str = ""

    @property
    def healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY
