"""Run Ledger entry model: append-only, hash-chained.

The ledger is the externally visible record of every run: one entry per
stage result plus one terminal entry carrying the whole run snapshot.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    kind: str  # "stage" | "run"
    stage: str = ""
    status: str
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    payload: dict[str, Any] = {}
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed on append, seals this entry
