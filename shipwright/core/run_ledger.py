"""Append-only, hash-chained Run Ledger backed by SQLite.

The ledger is the system's externally visible state: every stage result of
every run, and a terminal record carrying the full ``PipelineRun``.
Dashboards and the CLI read from it; nothing reads a run's truth from
anywhere else.

Design:
- Append-only: ``record_stage()`` and ``record_run()`` are the only writes.
- Hash-chained per run: each entry includes SHA-256 of the previous entry.
- WAL journal mode for concurrent readers.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path

from shipwright.core.hasher import compute_entry_hash
from shipwright.models.ledger import LedgerEntry
from shipwright.models.runs import PipelineRun, StageResult

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_LEDGER = """
CREATE TABLE IF NOT EXISTS run_ledger (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id             TEXT NOT NULL UNIQUE,
    run_id               TEXT NOT NULL,
    kind                 TEXT NOT NULL,
    stage                TEXT NOT NULL DEFAULT '',
    status               TEXT NOT NULL,
    timestamp_utc        TEXT NOT NULL,
    payload_json         TEXT NOT NULL DEFAULT '{}',
    previous_entry_hash  TEXT NOT NULL DEFAULT '',
    entry_hash           TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_RUN = """
CREATE INDEX IF NOT EXISTS idx_run_id ON run_ledger(run_id, id);
"""


class LedgerIntegrityError(RuntimeError):
    """Raised when the hash chain is broken."""


class RunLedger:
    """Append-only, hash-chained record of pipeline runs.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False, timeout=30)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_LEDGER)
            conn.execute(_CREATE_IDX_RUN)
            conn.commit()

    # ------------------------------------------------------------------
    # Core: append-only writes
    # ------------------------------------------------------------------

    def record_stage(self, run_id: str, result: StageResult) -> LedgerEntry:
        return self.append(
            LedgerEntry(
                run_id=run_id,
                kind="stage",
                stage=result.stage.value,
                status=result.status.value,
                payload=result.model_dump(mode="json"),
            )
        )

    def record_run(self, run: PipelineRun) -> LedgerEntry:
        return self.append(
            LedgerEntry(
                run_id=run.run_id,
                kind="run",
                status=run.status.value,
                payload=run.model_dump(mode="json"),
            )
        )

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Seal *entry* onto its run's chain and persist it."""
        with self._write_lock, self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT entry_hash FROM run_ledger WHERE run_id = ? ORDER BY id DESC LIMIT 1",
                (entry.run_id,),
            ).fetchone()
            previous_hash = row[0] if row else ""

            entry_dict = entry.model_dump(mode="json")
            entry_dict["previous_entry_hash"] = previous_hash
            sealed = entry.model_copy(
                update={
                    "previous_entry_hash": previous_hash,
                    "entry_hash": compute_entry_hash(entry_dict),
                }
            )
            conn.execute(
                """
                INSERT INTO run_ledger
                    (entry_id, run_id, kind, stage, status, timestamp_utc,
                     payload_json, previous_entry_hash, entry_hash)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    sealed.entry_id,
                    sealed.run_id,
                    sealed.kind,
                    sealed.stage,
                    sealed.status,
                    entry_dict["timestamp_utc"],
                    json.dumps(entry_dict["payload"]),
                    sealed.previous_entry_hash,
                    sealed.entry_hash,
                ),
            )
            conn.commit()
        return sealed

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """Return all ledger entries for a run, ordered chronologically."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM run_ledger WHERE run_id = ? ORDER BY id ASC",
                (run_id,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_run(self, run_id: str) -> PipelineRun | None:
        """Return the terminal record of *run_id*, or None if unfinished."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM run_ledger WHERE run_id = ? AND kind = 'run'"
                " ORDER BY id DESC LIMIT 1",
                (run_id,),
            ).fetchone()
        if row is None:
            return None
        return PipelineRun.model_validate(self._row_to_entry(row).payload)

    def list_runs(self, limit: int = 20, target: str | None = None) -> list[PipelineRun]:
        """Most recent finished runs, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM run_ledger WHERE kind = 'run' ORDER BY id DESC"
            ).fetchall()
        runs = [PipelineRun.model_validate(self._row_to_entry(r).payload) for r in rows]
        if target is not None:
            runs = [r for r in runs if r.target == target]
        return runs[:limit]

    def get_all_run_ids(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT run_id, MAX(id) AS last FROM run_ledger GROUP BY run_id ORDER BY last DESC"
            ).fetchall()
        return [row[0] for row in rows]

    def export_run(self, run_id: str) -> dict:
        """JSON-ready export of a run for dashboards and audit logs."""
        run = self.get_run(run_id)
        return {
            "run": run.model_dump(mode="json") if run else None,
            "entries": [e.model_dump(mode="json") for e in self.get_run_entries(run_id)],
        }

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Walk a run's entries, recomputing each hash and link.

        Returns True if the chain is valid, raises LedgerIntegrityError otherwise.
        """
        prev_hash = ""
        for entry in self.get_run_entries(run_id):
            if entry.previous_entry_hash != prev_hash:
                raise LedgerIntegrityError(
                    f"Chain broken at entry {entry.entry_id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {entry.previous_entry_hash!r}"
                )
            expected_hash = compute_entry_hash(entry.model_dump(mode="json"))
            if entry.entry_hash != expected_hash:
                raise LedgerIntegrityError(
                    f"Tampered entry {entry.entry_id}: "
                    f"expected hash={expected_hash!r}, got {entry.entry_hash!r}"
                )
            prev_hash = entry.entry_hash
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_entry(row: tuple) -> LedgerEntry:
        (
            _id,
            entry_id,
            run_id,
            kind,
            stage,
            status,
            timestamp_utc,
            payload_json,
            previous_entry_hash,
            entry_hash,
        ) = row
        return LedgerEntry(
            entry_id=entry_id,
            run_id=run_id,
            kind=kind,
            stage=stage,
            status=status,
            timestamp_utc=timestamp_utc,
            payload=json.loads(payload_json),
            previous_entry_hash=previous_entry_hash,
            entry_hash=entry_hash,
        )
