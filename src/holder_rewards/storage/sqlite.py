"""SQLite implementation of the StateStore protocol."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import aiosqlite

from holder_rewards.models.events import AttemptEvent, CycleEvent
from holder_rewards.models.records import AttemptRecord, CycleRecord
from holder_rewards.models.submission import BatchOutcome, CycleSummary

SCHEMA = """
-- Distribution cycles
CREATE TABLE IF NOT EXISTS cycles (
    cycle_id TEXT PRIMARY KEY,
    status TEXT NOT NULL DEFAULT 'running',
    started_at TEXT NOT NULL,
    completed_at TEXT,
    holders_total INTEGER NOT NULL DEFAULT 0,
    holders_qualified INTEGER NOT NULL DEFAULT 0,
    total_reward TEXT NOT NULL DEFAULT '0',
    distributed TEXT NOT NULL DEFAULT '0',
    remainder TEXT NOT NULL DEFAULT '0',
    batches_total INTEGER NOT NULL DEFAULT 0,
    batches_confirmed INTEGER NOT NULL DEFAULT 0,
    batches_failed INTEGER NOT NULL DEFAULT 0,
    skipped_below_min_holding INTEGER NOT NULL DEFAULT 0,
    skipped_below_min_payout INTEGER NOT NULL DEFAULT 0,
    error TEXT
);
CREATE INDEX IF NOT EXISTS idx_cycles_started ON cycles(started_at);

-- Terminal batch outcomes
CREATE TABLE IF NOT EXISTS batches (
    cycle_id TEXT NOT NULL,
    batch_id INTEGER NOT NULL,
    status TEXT NOT NULL,
    recipients INTEGER NOT NULL,
    amount TEXT NOT NULL,
    signature TEXT,
    attempts INTEGER NOT NULL DEFAULT 0,
    error TEXT,
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (cycle_id, batch_id)
);

-- Submission attempt log
CREATE TABLE IF NOT EXISTS attempts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    cycle_id TEXT NOT NULL,
    batch_id INTEGER NOT NULL,
    attempt INTEGER NOT NULL,
    outcome TEXT NOT NULL,
    backoff_ms INTEGER NOT NULL DEFAULT 0,
    signature TEXT,
    error TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_attempts_cycle ON attempts(cycle_id);

-- Undistributed remainder carried to the next cycle
CREATE TABLE IF NOT EXISTS carry (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    amount TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _cycle_status(summary: CycleSummary) -> str:
    if summary.aborted_reason:
        return "aborted"
    if summary.batches_failed or summary.batches_cancelled:
        return "partial"
    return "completed"


class SQLiteStateStore:
    """SQLite-backed implementation of the StateStore protocol."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "Store not initialized. Call initialize() first."
        return self._db

    # ── Cycles ─────────────────────────────────────────────

    async def save_cycle_event(self, event: CycleEvent) -> None:
        if event.phase == "start":
            await self.db.execute(
                "INSERT OR IGNORE INTO cycles (cycle_id, status, started_at)"
                " VALUES (?, 'running', ?)",
                (event.cycle_id, _now()),
            )
        else:
            await self.db.execute(
                "UPDATE cycles SET holders_total=?, holders_qualified=?, total_reward=?,"
                " batches_total=?, batches_confirmed=?, batches_failed=?,"
                " skipped_below_min_holding=?, skipped_below_min_payout=?,"
                " error=COALESCE(?, error) WHERE cycle_id=?",
                (
                    event.holders_total, event.holders_qualified, str(event.total_reward),
                    event.batches_total, event.batches_confirmed, event.batches_failed,
                    event.skipped_below_min_holding, event.skipped_below_min_payout,
                    event.error, event.cycle_id,
                ),
            )
        await self.db.commit()

    async def save_cycle_summary(self, summary: CycleSummary) -> None:
        await self.db.execute(
            "INSERT INTO cycles (cycle_id, status, started_at, completed_at,"
            " holders_total, holders_qualified, total_reward, distributed, remainder,"
            " batches_total, batches_confirmed, batches_failed,"
            " skipped_below_min_holding, skipped_below_min_payout, error)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
            " ON CONFLICT(cycle_id) DO UPDATE SET"
            " status=excluded.status, completed_at=excluded.completed_at,"
            " holders_total=excluded.holders_total,"
            " holders_qualified=excluded.holders_qualified,"
            " total_reward=excluded.total_reward, distributed=excluded.distributed,"
            " remainder=excluded.remainder, batches_total=excluded.batches_total,"
            " batches_confirmed=excluded.batches_confirmed,"
            " batches_failed=excluded.batches_failed,"
            " skipped_below_min_holding=excluded.skipped_below_min_holding,"
            " skipped_below_min_payout=excluded.skipped_below_min_payout,"
            " error=excluded.error",
            (
                summary.cycle_id, _cycle_status(summary), summary.started_at,
                summary.completed_at or _now(),
                summary.holders_total, summary.holders_qualified,
                str(summary.total_reward), str(summary.distributed_amount),
                str(summary.remainder),
                summary.batches_total, summary.batches_confirmed, summary.batches_failed,
                summary.skipped_below_min_holding, summary.skipped_below_min_payout,
                summary.aborted_reason,
            ),
        )
        await self.db.commit()

    async def get_cycle_history(self, limit: int = 10) -> list[CycleRecord]:
        async with self.db.execute(
            "SELECT * FROM cycles ORDER BY started_at DESC LIMIT ?", (limit,)
        ) as cur:
            return [
                CycleRecord(
                    cycle_id=row["cycle_id"],
                    status=row["status"],
                    started_at=row["started_at"],
                    completed_at=row["completed_at"],
                    holders_total=row["holders_total"],
                    holders_qualified=row["holders_qualified"],
                    total_reward=row["total_reward"],
                    distributed=row["distributed"],
                    remainder=row["remainder"],
                    batches_total=row["batches_total"],
                    batches_confirmed=row["batches_confirmed"],
                    batches_failed=row["batches_failed"],
                    skipped_below_min_holding=row["skipped_below_min_holding"],
                    skipped_below_min_payout=row["skipped_below_min_payout"],
                    error=row["error"],
                )
                async for row in cur
            ]

    # ── Batches & attempts ─────────────────────────────────

    async def save_batch_outcome(self, cycle_id: str, outcome: BatchOutcome) -> None:
        await self.db.execute(
            "INSERT INTO batches"
            " (cycle_id, batch_id, status, recipients, amount, signature, attempts, error,"
            " updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)"
            " ON CONFLICT(cycle_id, batch_id) DO UPDATE SET"
            " status=excluded.status, signature=excluded.signature,"
            " attempts=excluded.attempts, error=excluded.error,"
            " updated_at=excluded.updated_at",
            (
                cycle_id, outcome.batch_id, outcome.status.value, outcome.recipients,
                str(outcome.amount), outcome.signature, len(outcome.attempts),
                outcome.error, _now(),
            ),
        )
        await self.db.commit()

    async def get_batch_statuses(self, cycle_id: str) -> dict[int, str]:
        async with self.db.execute(
            "SELECT batch_id, status FROM batches WHERE cycle_id=? ORDER BY batch_id",
            (cycle_id,),
        ) as cur:
            return {row["batch_id"]: row["status"] async for row in cur}

    async def record_attempt(self, event: AttemptEvent) -> None:
        await self.db.execute(
            "INSERT INTO attempts"
            " (cycle_id, batch_id, attempt, outcome, backoff_ms, signature, error, created_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                event.cycle_id, event.batch_id, event.attempt, event.outcome,
                event.backoff_ms, event.signature, event.error, _now(),
            ),
        )
        await self.db.commit()

    async def get_attempts(self, cycle_id: str) -> list[AttemptRecord]:
        async with self.db.execute(
            "SELECT * FROM attempts WHERE cycle_id=? ORDER BY id", (cycle_id,)
        ) as cur:
            return [
                AttemptRecord(
                    cycle_id=row["cycle_id"],
                    batch_id=row["batch_id"],
                    attempt=row["attempt"],
                    outcome=row["outcome"],
                    backoff_ms=row["backoff_ms"],
                    signature=row["signature"],
                    error=row["error"],
                    created_at=row["created_at"],
                )
                async for row in cur
            ]

    # ── Remainder accumulator ──────────────────────────────

    async def get_carried_remainder(self) -> Decimal:
        async with self.db.execute("SELECT amount FROM carry WHERE id=1") as cur:
            row = await cur.fetchone()
            return Decimal(row["amount"]) if row else Decimal(0)

    async def set_carried_remainder(self, amount: Decimal) -> None:
        await self.db.execute(
            "INSERT INTO carry (id, amount, updated_at) VALUES (1, ?, ?)"
            " ON CONFLICT(id) DO UPDATE SET amount=excluded.amount,"
            " updated_at=excluded.updated_at",
            (str(amount), _now()),
        )
        await self.db.commit()
