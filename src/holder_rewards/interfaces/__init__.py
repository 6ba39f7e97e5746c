"""Protocol interfaces for all holder_rewards components."""

from holder_rewards.interfaces.ledger import AccountInfo, LedgerClient, RecentReference
from holder_rewards.interfaces.pool import PoolBackend
from holder_rewards.interfaces.sink import Event, EventSink
from holder_rewards.interfaces.store import StateStore

__all__ = [
    "AccountInfo", "LedgerClient", "RecentReference",
    "PoolBackend",
    "Event", "EventSink",
    "StateStore",
]
