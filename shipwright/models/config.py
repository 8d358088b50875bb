"""Pipeline definition models.

Loaded from ``shipwright.toml`` (or ``[tool.shipwright]`` in pyproject.toml)::

    project = "inventory"
    default_target = "prod-1"

    [build]
    command = ["make", "dist"]
    artifact_path = "dist/inventory-{revision}.tar.gz"

    [test]
    command = ["make", "test"]

    [[targets]]
    name = "prod-1"
    host = "10.0.0.5"
    credential_ref = "prod_ssh_key"

    [targets.service]
    name = "inventory"
    install_path = "/opt/inventory/app.tar.gz"
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from shipwright.core.errors import ConfigError
from shipwright.models.targets import DeploymentTarget


class BuildSpec(BaseModel):
    """External build step: a command that leaves one artifact file behind."""

    model_config = ConfigDict(frozen=True)

    command: list[str]
    artifact_path: str  # may contain {revision}
    workdir: Path = Path(".")
    timeout_seconds: float = 1800.0


class TestSpec(BaseModel):
    """External test step: exit status 0 means the suite passed."""

    __test__ = False  # not a pytest class

    model_config = ConfigDict(frozen=True)

    command: list[str]
    workdir: Path = Path(".")
    timeout_seconds: float = 1800.0


class PipelineConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    project: str = "app"
    build: BuildSpec
    test: TestSpec
    targets: list[DeploymentTarget] = []
    default_target: str | None = None

    @model_validator(mode="after")
    def _check_targets(self) -> PipelineConfig:
        names = [t.name for t in self.targets]
        if len(names) != len(set(names)):
            raise ValueError(f"duplicate target names: {sorted(names)}")
        if self.default_target and self.default_target not in names:
            raise ValueError(
                f"default_target {self.default_target!r} is not among targets {names}"
            )
        return self

    def get_target(self, name: str | None = None) -> DeploymentTarget:
        """Return the named target, or the default one."""
        wanted = name or self.default_target
        if wanted is None and len(self.targets) == 1:
            return self.targets[0]
        for target in self.targets:
            if target.name == wanted:
                return target
        raise ConfigError(
            f"Unknown target {wanted!r}. Configured targets: "
            f"{[t.name for t in self.targets]}"
        )


def load_pipeline_config(path: Path) -> PipelineConfig:
    """Read a pipeline definition from a TOML file.

    ``pyproject.toml`` files are read from their ``[tool.shipwright]`` table.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Pipeline config not found: {path}")
    with path.open("rb") as fh:
        data: dict[str, Any] = tomllib.load(fh)
    if path.name == "pyproject.toml":
        data = data.get("tool", {}).get("shipwright", {})
    try:
        return PipelineConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid pipeline config {path}: {exc}") from exc
