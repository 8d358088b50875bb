"""Durable deployment target records backed by SQLite.

The ``active_version`` column is the one piece of mutable state shared
between runs.  It is only written through ``compare_and_set_active``, which
succeeds only if the stored value still equals what the caller read, and
every committed change is appended to the activation history.

The registry also stores per-target leases so runs in separate processes
serialize their deployments (see ``TargetLockManager``).
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from datetime import datetime, timezone
from pathlib import Path

from shipwright.models.targets import Activation, DeploymentTarget, ServiceSpec

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_TARGETS = """
CREATE TABLE IF NOT EXISTS targets (
    name            TEXT PRIMARY KEY,
    host            TEXT NOT NULL,
    port            INTEGER NOT NULL,
    user            TEXT NOT NULL,
    credential_ref  TEXT NOT NULL,
    service_json    TEXT NOT NULL,
    active_version  TEXT
);
"""

_CREATE_HISTORY = """
CREATE TABLE IF NOT EXISTS activations (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    target            TEXT NOT NULL,
    previous_version  TEXT,
    version           TEXT NOT NULL,
    run_id            TEXT NOT NULL,
    reason            TEXT NOT NULL,
    activated_at      TEXT NOT NULL
);
"""

_CREATE_LEASES = """
CREATE TABLE IF NOT EXISTS leases (
    target      TEXT PRIMARY KEY,
    owner       TEXT NOT NULL,
    expires_at  REAL NOT NULL
);
"""


class TargetNotFoundError(LookupError):
    """Raised when a target name is not registered."""


class ActiveVersionConflict(RuntimeError):
    """Raised when a compare-and-set finds a different active version."""


class TargetRegistry:
    """Persisted ``DeploymentTarget`` records.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False, timeout=30)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_TARGETS)
            conn.execute(_CREATE_HISTORY)
            conn.execute(_CREATE_LEASES)
            conn.commit()

    # ------------------------------------------------------------------
    # Targets
    # ------------------------------------------------------------------

    def register(self, target: DeploymentTarget) -> DeploymentTarget:
        """Insert or update a target's connection details.

        The stored ``active_version`` is never touched here; a target seen
        for the first time starts with the value carried by *target*.
        """
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO targets
                    (name, host, port, user, credential_ref, service_json, active_version)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    host = excluded.host,
                    port = excluded.port,
                    user = excluded.user,
                    credential_ref = excluded.credential_ref,
                    service_json = excluded.service_json
                """,
                (
                    target.name,
                    target.host,
                    target.port,
                    target.user,
                    target.credential_ref,
                    target.service.model_dump_json(),
                    target.active_version,
                ),
            )
            conn.commit()
        return self.get(target.name)

    def get(self, name: str) -> DeploymentTarget:
        """Return the committed record for *name*."""
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM targets WHERE name = ?", (name,)).fetchone()
        if row is None:
            raise TargetNotFoundError(f"Target not registered: {name}")
        return self._row_to_target(row)

    def list_targets(self) -> list[DeploymentTarget]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM targets ORDER BY name").fetchall()
        return [self._row_to_target(row) for row in rows]

    def active_versions(self) -> set[str]:
        """Every version currently active on some target."""
        return {t.active_version for t in self.list_targets() if t.active_version}

    # ------------------------------------------------------------------
    # Active version pointer
    # ------------------------------------------------------------------

    def compare_and_set_active(
        self,
        name: str,
        expected: str | None,
        new: str,
        *,
        run_id: str,
        reason: str,
    ) -> DeploymentTarget:
        """Atomically move *name* from *expected* to *new*.

        Raises ``ActiveVersionConflict`` if another writer got there first.
        """
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT active_version FROM targets WHERE name = ?", (name,)
            ).fetchone()
            if row is None:
                conn.rollback()
                raise TargetNotFoundError(f"Target not registered: {name}")
            if row[0] != expected:
                conn.rollback()
                raise ActiveVersionConflict(
                    f"{name}: expected active version {expected!r}, found {row[0]!r}"
                )
            conn.execute(
                "UPDATE targets SET active_version = ? WHERE name = ?", (new, name)
            )
            conn.execute(
                "INSERT INTO activations"
                " (target, previous_version, version, run_id, reason, activated_at)"
                " VALUES (?, ?, ?, ?, ?, ?)",
                (name, expected, new, run_id, reason, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()
        logger.info("%s: active version %s -> %s (%s, run %s)", name, expected, new, reason, run_id)
        return self.get(name)

    def history(self, name: str, limit: int = 50) -> list[Activation]:
        """Committed activations for *name*, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT target, previous_version, version, run_id, reason, activated_at"
                " FROM activations WHERE target = ? ORDER BY id DESC LIMIT ?",
                (name, limit),
            ).fetchall()
        return [
            Activation(
                target=target,
                previous_version=previous,
                version=version,
                run_id=run_id,
                reason=reason,
                activated_at=activated_at,
            )
            for target, previous, version, run_id, reason, activated_at in rows
        ]

    # ------------------------------------------------------------------
    # Leases
    # ------------------------------------------------------------------

    def try_acquire_lease(self, name: str, owner: str, ttl: float) -> bool:
        """Take the deploy lease for *name* unless a live one is held."""
        now = time.time()
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT owner, expires_at FROM leases WHERE target = ?", (name,)
            ).fetchone()
            if row is not None and row[0] != owner and row[1] > now:
                conn.rollback()
                return False
            if row is not None and row[0] != owner:
                logger.warning("%s: taking over expired lease held by %s", name, row[0])
            conn.execute(
                "INSERT OR REPLACE INTO leases (target, owner, expires_at) VALUES (?, ?, ?)",
                (name, owner, now + ttl),
            )
            conn.commit()
        return True

    def release_lease(self, name: str, owner: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM leases WHERE target = ? AND owner = ?", (name, owner)
            )
            conn.commit()

    def lease_holder(self, name: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT owner, expires_at FROM leases WHERE target = ?", (name,)
            ).fetchone()
        if row is None or row[1] <= time.time():
            return None
        return row[0]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_target(row: tuple) -> DeploymentTarget:
        name, host, port, user, credential_ref, service_json, active_version = row
        return DeploymentTarget(
            name=name,
            host=host,
            port=port,
            user=user,
            credential_ref=credential_ref,
            service=ServiceSpec.model_validate(json.loads(service_json)),
            active_version=active_version,
        )
