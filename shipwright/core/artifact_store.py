"""Versioned, immutable artifact store.

Blob layout: {base_path}/blobs/{sha256[0:2]}/{sha256[2:4]}/{sha256}.dat
Index: {base_path}/index.db (SQLite), one row per version.

Versions are monotonic (``v1``, ``v2``, ...) and never reused, even after
eviction.  Storing bytes whose digest is already indexed returns the
existing artifact, so an identical rebuild maps to the same version.  There
is no update; the only removal path is ``evict()`` under a retention policy.
"""

from __future__ import annotations

import logging
import os
import shutil
import sqlite3
import tempfile
from datetime import datetime
from pathlib import Path

from shipwright.core.hasher import sha256_file, sha256_hex
from shipwright.models.artifacts import Artifact

logger = logging.getLogger(__name__)

_CREATE_ARTIFACTS = """
CREATE TABLE IF NOT EXISTS artifacts (
    seq              INTEGER PRIMARY KEY AUTOINCREMENT,
    digest           TEXT NOT NULL UNIQUE,
    name             TEXT NOT NULL,
    size_bytes       INTEGER NOT NULL,
    source_revision  TEXT NOT NULL,
    created_at       TEXT NOT NULL
);
"""


class ArtifactNotFoundError(LookupError):
    """Raised when a version is not (or no longer) in the store."""


class ArtifactIntegrityError(RuntimeError):
    """Raised when a stored blob's hash does not match its digest."""


class VersionedArtifactStore:
    """Durable, versioned storage of build outputs.

    Parameters
    ----------
    base_path:
        Root directory for blobs and the version index.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._blobs = self._base / "blobs"
        self._blobs.mkdir(parents=True, exist_ok=True)
        self._db_path = self._base / "index.db"
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False, timeout=30)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_ARTIFACTS)
            conn.commit()

    @staticmethod
    def _extract_digest(digest: str) -> str:
        return digest.removeprefix("sha256:")

    def _blob_path(self, hex_digest: str) -> Path:
        return self._blobs / hex_digest[:2] / hex_digest[2:4] / f"{hex_digest}.dat"

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    def store(self, data: bytes, *, name: str, source_revision: str) -> Artifact:
        """Store raw bytes and return the artifact record."""
        hex_digest = sha256_hex(data)
        path = self._blob_path(hex_digest)
        if not path.exists():
            self._write_atomic(path, lambda fh: fh.write(data))
        return self._index(hex_digest, name=name, size=len(data), revision=source_revision)

    def store_file(
        self, source: Path, *, source_revision: str, name: str | None = None
    ) -> Artifact:
        """Copy a build output file into the store and return its record."""
        source = Path(source)
        hex_digest = sha256_file(source)
        path = self._blob_path(hex_digest)
        if not path.exists():
            with source.open("rb") as src:
                self._write_atomic(path, lambda fh: shutil.copyfileobj(src, fh))
        return self._index(
            hex_digest,
            name=name or source.name,
            size=source.stat().st_size,
            revision=source_revision,
        )

    def _write_atomic(self, path: Path, writer) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                writer(fh)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def _index(self, hex_digest: str, *, name: str, size: int, revision: str) -> Artifact:
        """Return the existing row for *hex_digest* or insert a new version."""
        digest = f"sha256:{hex_digest}"
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT * FROM artifacts WHERE digest = ?", (digest,)
            ).fetchone()
            if row is None:
                cursor = conn.execute(
                    "INSERT INTO artifacts (digest, name, size_bytes, source_revision, created_at)"
                    " VALUES (?, ?, ?, ?, ?)",
                    (digest, name, size, revision, datetime.now().astimezone().isoformat()),
                )
                row = conn.execute(
                    "SELECT * FROM artifacts WHERE seq = ?", (cursor.lastrowid,)
                ).fetchone()
                logger.info("Stored artifact v%s (%s, %d bytes)", row[0], name, size)
            else:
                logger.info("Artifact for %s already stored as v%s", digest[:19], row[0])
            conn.commit()
        return self._row_to_artifact(row)

    # ------------------------------------------------------------------
    # Retrieve
    # ------------------------------------------------------------------

    def get(self, version: str) -> Artifact:
        """Return the record for *version*."""
        seq = self._parse_version(version)
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM artifacts WHERE seq = ?", (seq,)).fetchone()
        if row is None:
            raise ArtifactNotFoundError(f"Artifact version not found: {version}")
        return self._row_to_artifact(row)

    def latest(self) -> Artifact | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM artifacts ORDER BY seq DESC LIMIT 1"
            ).fetchone()
        return self._row_to_artifact(row) if row else None

    def list_artifacts(self) -> list[Artifact]:
        """All retained artifacts, oldest first."""
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM artifacts ORDER BY seq ASC").fetchall()
        return [self._row_to_artifact(row) for row in rows]

    def retrieve(self, version: str) -> bytes:
        """Return the artifact bytes, verifying integrity first."""
        return self.path_for(version).read_bytes()

    def path_for(self, version: str) -> Path:
        """Return the on-disk blob for *version* after re-hashing it.

        Rollback relies on this: a corrupted prior artifact must fail here,
        not after it has been pushed to a target.
        """
        artifact = self.get(version)
        path = Path(artifact.location)
        if not path.exists():
            raise ArtifactNotFoundError(f"Blob missing for {version}: {path}")
        if sha256_file(path) != self._extract_digest(artifact.digest):
            raise ArtifactIntegrityError(
                f"Artifact {version} at {path} failed integrity check"
            )
        return path

    def exists(self, version: str) -> bool:
        try:
            self.get(version)
        except ArtifactNotFoundError:
            return False
        return True

    def verify(self, version: str) -> bool:
        """Re-hash the stored blob and compare against its digest."""
        try:
            self.path_for(version)
        except (ArtifactNotFoundError, ArtifactIntegrityError):
            return False
        return True

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def evict(self, keep: int, protected: set[str] | None = None) -> list[Artifact]:
        """Apply the retention policy: keep the newest *keep* versions.

        Versions in *protected* (for example every target's active version)
        are never evicted, whatever their age.  Returns the evicted records.
        """
        if keep < 0:
            raise ValueError("keep must be >= 0")
        protected = protected or set()
        artifacts = self.list_artifacts()
        doomed = artifacts[: max(len(artifacts) - keep, 0)]
        evicted: list[Artifact] = []
        for artifact in doomed:
            if artifact.version in protected:
                continue
            with self._connect() as conn:
                conn.execute("DELETE FROM artifacts WHERE seq = ?", (artifact.sequence,))
                conn.commit()
            Path(artifact.location).unlink(missing_ok=True)
            evicted.append(artifact)
            logger.info("Evicted artifact %s (%s)", artifact.version, artifact.name)
        return evicted

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_version(version: str) -> int:
        try:
            return int(version.removeprefix("v"))
        except ValueError:
            raise ArtifactNotFoundError(f"Malformed artifact version: {version!r}") from None

    def _row_to_artifact(self, row: tuple) -> Artifact:
        seq, digest, name, size_bytes, source_revision, created_at = row
        return Artifact(
            version=f"v{seq}",
            digest=digest,
            name=name,
            location=str(self._blob_path(self._extract_digest(digest))),
            size_bytes=size_bytes,
            source_revision=source_revision,
            created_at=created_at,
        )
