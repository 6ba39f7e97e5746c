from holder_rewards.solana.client import SolanaLedgerClient
from holder_rewards.solana.holders import TokenHolderEnumerator

__all__ = ["SolanaLedgerClient", "TokenHolderEnumerator"]
