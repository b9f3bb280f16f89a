"""
Pydantic models for persisted guard state.

The lock record is the only durable state of an episode. It is explicitly
versioned so a record written by an incompatible release is treated as
unreadable (UNLOCKED, then reconciled from the ledger) instead of being
misinterpreted.
"""
from __future__ import annotations

import hashlib
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

LOCK_RECORD_VERSION = 1


class ExecutionLockRecord(BaseModel):
    """Persisted single-fire lock plus the fired-trigger set."""

    model_config = ConfigDict(extra="ignore")

    version: int = LOCK_RECORD_VERSION
    submitted: bool = False
    proposal_ref: Optional[str] = None
    transaction_hash: Optional[str] = None
    submitted_at_ms: Optional[int] = None
    closed: bool = False
    closed_ref: Optional[str] = None
    executions: int = 0
    fired_trigger_ids: list[str] = Field(default_factory=list)
    updated_at_ms: Optional[int] = None

    @property
    def is_current_version(self) -> bool:
        return self.version == LOCK_RECORD_VERSION


def episode_id_for(commitment_text: str, governor: str) -> str:
    """Stable identifier of a commitment episode (governor + commitment text)."""
    digest = hashlib.sha256(f"{governor.lower()}\n{commitment_text}".encode()).hexdigest()
    return digest[:32]
