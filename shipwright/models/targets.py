"""Deployment target models."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class ServiceSpec(BaseModel):
    """How the application service is managed on a target host.

    Command templates may reference ``{service}``, ``{remote_path}``,
    ``{install_path}`` and ``{version}``.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    install_path: str
    staging_dir: str = "/tmp/shipwright"
    stop_command: str = "sudo systemctl stop {service}"
    start_command: str = "sudo systemctl start {service}"
    install_command: str = "install -m 0755 {remote_path} {install_path}"
    health_command: str = "curl -fsS http://127.0.0.1:8080/health"


class DeploymentTarget(BaseModel):
    """A host the pipeline deploys to.

    ``active_version`` is the single source of truth for rollback.  It is
    only ever changed through ``TargetRegistry.compare_and_set_active``.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    host: str
    port: int = 22
    user: str = "deploy"
    credential_ref: str  # secret name in the vault, never the key itself
    service: ServiceSpec
    active_version: str | None = None

    @property
    def address(self) -> str:
        return f"{self.user}@{self.host}"


class Activation(BaseModel):
    """One committed change of a target's active version."""

    model_config = ConfigDict(frozen=True)

    target: str
    previous_version: str | None
    version: str
    run_id: str
    reason: str  # "deploy" | "rollback"
    activated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
