"""LedgerClient protocol - reads balances/accounts, submits and confirms transactions."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from solders.pubkey import Pubkey

from holder_rewards.models.submission import AttemptOutcome


@dataclass(frozen=True)
class RecentReference:
    """A recent blockhash and the last block height at which it is still valid."""

    blockhash: str
    last_valid_block_height: int


@dataclass(frozen=True)
class AccountInfo:
    owner: str  # owning program
    lamports: int
    data_len: int = 0


class LedgerClient(Protocol):
    """Everything the distribution engine needs from the ledger."""

    async def get_token_balance(self, token_account: str) -> Decimal:
        """Whole-token balance of an SPL token account (0 if it does not exist)."""
        ...

    async def get_account_info(self, address: str) -> AccountInfo | None:
        """Account metadata, or None when the account does not exist."""
        ...

    async def get_token_accounts(self, mint: str, program_id: Pubkey) -> list[bytes]:
        """Raw account data of every token account holding ``mint``."""
        ...

    async def get_recent_reference(self) -> RecentReference:
        ...

    async def submit(self, raw_transaction: bytes) -> str:
        """Send a signed, serialized transaction. Returns its signature."""
        ...

    async def confirm(
        self, signature: str, reference: RecentReference, timeout: float
    ) -> AttemptOutcome:
        """Wait for CONFIRMED, EXPIRED or FAILED. Raises asyncio.TimeoutError on timeout."""
        ...

    async def get_signature_outcome(self, signature: str) -> AttemptOutcome | None:
        """Current status of a previously sent signature. None if unknown to the cluster."""
        ...
