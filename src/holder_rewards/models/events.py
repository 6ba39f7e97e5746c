"""Structured events emitted to the observability sink."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class CycleEvent:
    """Emitted at cycle start ("start") and end ("end").

    The start event is sent before the fee balance or holder snapshot is
    read, so it carries only the cycle id; its counters stay zero. The end
    event carries the final summary.
    """

    phase: str
    cycle_id: str
    holders_total: int = 0
    holders_qualified: int = 0
    total_reward: Decimal = Decimal(0)
    batches_total: int = 0
    batches_confirmed: int = 0
    batches_failed: int = 0
    skipped_below_min_holding: int = 0
    skipped_below_min_payout: int = 0
    error: str | None = None


@dataclass(frozen=True)
class AttemptEvent:
    """Emitted after every submission attempt."""

    cycle_id: str
    batch_id: int
    attempt: int
    outcome: str
    backoff_ms: int = 0
    signature: str | None = None
    error: str | None = None
