"""Persisted record types read back from the state store."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class CycleRecord:
    """A distribution cycle as persisted in the state store."""

    cycle_id: str
    status: str  # running | completed | partial | aborted
    started_at: str
    completed_at: str | None = None
    holders_total: int = 0
    holders_qualified: int = 0
    total_reward: str = "0"  # Decimal as text
    distributed: str = "0"
    remainder: str = "0"
    batches_total: int = 0
    batches_confirmed: int = 0
    batches_failed: int = 0
    skipped_below_min_holding: int = 0
    skipped_below_min_payout: int = 0
    error: str | None = None


@dataclass
class AttemptRecord:
    """A single submission attempt for the retry log."""

    cycle_id: str
    batch_id: int
    attempt: int
    outcome: str
    backoff_ms: int
    signature: str | None
    error: str | None
    created_at: str
