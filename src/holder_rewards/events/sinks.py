"""Event sinks - where cycle and attempt events go."""

from __future__ import annotations

import logging
from typing import Sequence

from holder_rewards.interfaces.sink import Event, EventSink
from holder_rewards.interfaces.store import StateStore
from holder_rewards.models.events import AttemptEvent, CycleEvent

log = logging.getLogger(__name__)


class LoggingEventSink:
    """Writes events to the log. Failed attempts at WARNING, the rest at INFO."""

    async def emit(self, event: Event) -> None:
        if isinstance(event, CycleEvent):
            log.info(
                "cycle %s %s: holders %d/%d qualified, reward %s, batches %d/%d confirmed"
                " (%d failed), skipped %d below holding, %d below payout%s",
                event.cycle_id[:8], event.phase,
                event.holders_qualified, event.holders_total, event.total_reward,
                event.batches_confirmed, event.batches_total, event.batches_failed,
                event.skipped_below_min_holding, event.skipped_below_min_payout,
                f", error: {event.error}" if event.error else "",
            )
        else:
            level = logging.INFO if event.outcome == "confirmed" else logging.WARNING
            log.log(
                level,
                "cycle %s batch #%d attempt %d: %s (backoff %dms)%s",
                event.cycle_id[:8], event.batch_id, event.attempt, event.outcome,
                event.backoff_ms, f" {event.error}" if event.error else "",
            )


class StoreEventSink:
    """Persists events to the state store for `history` and `attempts`."""

    def __init__(self, store: StateStore) -> None:
        self._store = store

    async def emit(self, event: Event) -> None:
        if isinstance(event, AttemptEvent):
            await self._store.record_attempt(event)
        else:
            await self._store.save_cycle_event(event)


class FanOutSink:
    """Delivers each event to every sink. One sink failing never blocks the others."""

    def __init__(self, sinks: Sequence[EventSink]) -> None:
        self._sinks = list(sinks)

    async def emit(self, event: Event) -> None:
        for sink in self._sinks:
            try:
                await sink.emit(event)
            except Exception as exc:
                log.warning("Event sink %s failed: %s", type(sink).__name__, exc)
