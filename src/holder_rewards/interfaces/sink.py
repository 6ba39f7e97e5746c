"""EventSink protocol - receives structured cycle and attempt events."""

from __future__ import annotations

from typing import Protocol, Union

from holder_rewards.models.events import AttemptEvent, CycleEvent

Event = Union[CycleEvent, AttemptEvent]


class EventSink(Protocol):
    async def emit(self, event: Event) -> None:
        ...
