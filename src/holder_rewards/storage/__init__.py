from holder_rewards.storage.sqlite import SQLiteStateStore

__all__ = ["SQLiteStateStore"]
