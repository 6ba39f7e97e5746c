"""StateStore protocol - persists cycle history and the remainder accumulator."""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol

from holder_rewards.models.events import AttemptEvent, CycleEvent
from holder_rewards.models.submission import BatchOutcome, CycleSummary
from holder_rewards.models.records import AttemptRecord, CycleRecord


class StateStore(Protocol):
    """Persists distribution history for operators and crash diagnosis."""

    # ── Lifecycle ──────────────────────────────────────────

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        ...

    async def close(self) -> None:
        ...

    # ── Cycles ─────────────────────────────────────────────

    async def save_cycle_event(self, event: CycleEvent) -> None:
        ...

    async def save_cycle_summary(self, summary: CycleSummary) -> None:
        ...

    async def get_cycle_history(self, limit: int = 10) -> list[CycleRecord]:
        ...

    # ── Batches & attempts ─────────────────────────────────

    async def save_batch_outcome(self, cycle_id: str, outcome: BatchOutcome) -> None:
        ...

    async def record_attempt(self, event: AttemptEvent) -> None:
        ...

    async def get_attempts(self, cycle_id: str) -> list[AttemptRecord]:
        ...

    # ── Remainder accumulator ──────────────────────────────

    async def get_carried_remainder(self) -> Decimal:
        ...

    async def set_carried_remainder(self, amount: Decimal) -> None:
        ...
