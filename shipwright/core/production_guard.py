"""Production configuration guard.

Validates production-critical settings once, before any run starts, and
fails hard (``ProductionConfigError``) if a constraint is violated.  Other
code should not scatter ``if is_production`` checks.
"""

from __future__ import annotations

import logging

from shipwright.config import ProdConfig

logger = logging.getLogger(__name__)


class ProductionConfigError(RuntimeError):
    """Raised when production configuration constraints are violated.

    The process should exit; this is not meant to be caught and ignored.
    """


def enforce_production_constraints(config: ProdConfig) -> None:
    """Validate all production-critical configuration constraints.

    Constraints enforced
    --------------------
    1. Debug mode must be disabled.
    2. SSH host keys must be verified.
    3. Secrets must come from a mounted directory, not the environment.

    Parameters
    ----------
    config:
        The active ``ProdConfig`` instance.

    Raises
    ------
    ProductionConfigError
        If any production constraint is violated.
    """
    if not config.is_production:
        return

    violations: list[str] = []

    if config.debug:
        violations.append(
            "debug=True is not allowed in production. Set SHIPWRIGHT_DEBUG=false."
        )

    if not config.strict_host_key_checking:
        violations.append(
            "Host key checking must be enabled in production. "
            "Set SHIPWRIGHT_STRICT_HOST_KEY_CHECKING=true."
        )

    if config.secrets_dir is None:
        violations.append(
            "A secrets directory is required in production. Set SHIPWRIGHT_SECRETS_DIR."
        )
    elif not config.secrets_dir.is_dir():
        violations.append(f"Secrets directory {config.secrets_dir} does not exist.")

    if violations:
        msg = (
            "Production configuration guard failed.\n"
            + "\n".join(f"  - {v}" for v in violations)
        )
        logger.critical(msg)
        raise ProductionConfigError(msg)

    logger.info("Production configuration guard passed.")
