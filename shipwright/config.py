"""Runtime configuration, env-driven.

Centralized settings using pydantic-settings.  Reads from a .env file and
SHIPWRIGHT_* environment variables.  The pipeline definition itself (build
command, targets) lives in ``shipwright.toml``; see
``shipwright.models.config``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class ProdConfig(BaseSettings):
    """Runtime configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export SHIPWRIGHT_ENVIRONMENT=production
        export SHIPWRIGHT_LOG_FORMAT=json
        export SHIPWRIGHT_SECRETS_DIR=/run/secrets

    Or via .env file::

        SHIPWRIGHT_HEALTH_TIMEOUT_SECONDS=60
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SHIPWRIGHT_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    log_format: str = "rich"  # rich | json | text
    debug: bool = False

    # State paths
    pipeline_config_path: Path = Path("shipwright.toml")
    artifact_store_path: Path = Path(".shipwright/artifacts")
    registry_path: Path = Path(".shipwright/targets.db")
    ledger_path: Path = Path(".shipwright/ledger.db")

    # Secrets: a mounted directory is preferred; the env source reads
    # SHIPWRIGHT_SECRET_<NAME> once at run start.
    secrets_dir: Path | None = None
    secret_env_prefix: str = "SHIPWRIGHT_SECRET_"

    # Timeouts (seconds); every remote wait is bounded
    remote_timeout_seconds: float = 300.0
    connect_timeout_seconds: int = 10
    health_timeout_seconds: float = 30.0
    health_interval_seconds: float = 2.0
    health_max_inconclusive: int = 3
    recheck_timeout_seconds: float = 10.0
    lock_timeout_seconds: float = 600.0
    lease_ttl_seconds: float = 3600.0

    # SSH
    strict_host_key_checking: bool = False
    known_hosts_path: Path | None = None

    # Artifact retention
    retention_keep: int = 10

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"

