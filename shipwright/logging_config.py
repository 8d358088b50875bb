"""Centralized logging configuration.

Two output styles: Rich console output for humans and NDJSON for log
aggregators.  Modules only ever call ``logging.getLogger(__name__)``.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from rich.console import Console
from rich.logging import RichHandler


class JSONFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message.

    Extra fields passed through ``extra={"run": {...}}`` are included as-is,
    which is how finished runs reach the audit log.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        run = getattr(record, "run", None)
        if run is not None:
            log_entry["run"] = run
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def configure_logging(level: str = "INFO", fmt: str = "rich") -> None:
    """Install a single root handler.

    Parameters
    ----------
    level:
        Logging level name (DEBUG, INFO, WARNING, ERROR).
    fmt:
        ``"rich"`` for a RichHandler on stderr, ``"json"`` for NDJSON lines,
        anything else for plain text.
    """
    numeric = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric)
    root_logger.handlers.clear()

    handler: logging.Handler
    if fmt == "rich":
        handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler()
        if fmt == "json":
            handler.setFormatter(JSONFormatter())
        else:
            handler.setFormatter(
                logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
            )

    handler.setLevel(numeric)
    root_logger.addHandler(handler)
