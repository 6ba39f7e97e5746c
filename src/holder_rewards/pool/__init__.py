from holder_rewards.pool.raydium import RaydiumPoolBackend

__all__ = ["RaydiumPoolBackend"]
