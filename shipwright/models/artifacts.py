"""Versioned artifact models (immutable once stored)."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class Artifact(BaseModel):
    """Metadata for a stored build output; the bytes live in the store.

    ``version`` is the monotonic identifier (``v1``, ``v2``, ...) assigned
    the first time a digest is stored.  ``digest`` is both the blob's
    address and its integrity check.
    """

    model_config = ConfigDict(frozen=True)

    version: str
    digest: str  # "sha256:<hex>"
    name: str
    location: str  # path of the blob inside the store
    size_bytes: int
    source_revision: str
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def sequence(self) -> int:
        """Numeric part of the version, used for ordering."""
        return int(self.version.removeprefix("v"))
