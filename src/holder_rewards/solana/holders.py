"""Token holder enumeration - snapshots owner balances from on-chain token accounts."""

from __future__ import annotations

import asyncio
import logging
import struct
from collections import defaultdict
from typing import Iterable

from solders.pubkey import Pubkey

from holder_rewards.interfaces.ledger import LedgerClient
from holder_rewards.models.config import DistributorConfig
from holder_rewards.models.holders import Holder
from holder_rewards.solana.instructions import token_program_id
from holder_rewards.units import from_base_units

log = logging.getLogger(__name__)


def parse_owner_and_amount(account_data: bytes) -> tuple[str, int] | None:
    """Token account layout: Mint(0-32) | Owner(32-64) | Amount(64-72, u64 LE)."""
    if len(account_data) < 72:
        return None
    owner = str(Pubkey.from_bytes(account_data[32:64]))
    (amount,) = struct.unpack("<Q", account_data[64:72])
    return owner, amount


def aggregate_holders(
    accounts: Iterable[bytes], excluded: frozenset[str] = frozenset()
) -> dict[str, int]:
    """Sum raw balances per owner, dropping zero balances and excluded owners."""
    balances: dict[str, int] = defaultdict(int)
    skipped = 0
    for data in accounts:
        parsed = parse_owner_and_amount(data)
        if parsed is None:
            skipped += 1
            continue
        owner, amount = parsed
        if amount > 0 and owner not in excluded:
            balances[owner] += amount
    if skipped:
        log.warning("Skipped %d unparseable token accounts", skipped)
    return dict(balances)


class TokenHolderEnumerator:
    """Point-in-time holder snapshot for the distributed token.

    Balances are read once per cycle and never refreshed mid-cycle.
    Ordering is deterministic: descending balance, then address.
    """

    def __init__(self, ledger: LedgerClient, config: DistributorConfig) -> None:
        self._ledger = ledger
        self._mint = config.token_mint
        self._decimals = config.token_decimals
        self._program = token_program_id(config.token_program)
        self._excluded = config.excluded_wallets
        self._timeout = config.rpc_timeout

    async def snapshot(self) -> list[Holder]:
        accounts = await asyncio.wait_for(
            self._ledger.get_token_accounts(self._mint, self._program),
            self._timeout,
        )
        balances = aggregate_holders(accounts, self._excluded)
        holders = [
            Holder(address=owner, balance=from_base_units(raw, self._decimals))
            for owner, raw in sorted(balances.items(), key=lambda kv: (-kv[1], kv[0]))
        ]
        log.info(
            "Holder snapshot: %d token accounts, %d holders (%d wallets excluded)",
            len(accounts), len(holders), len(self._excluded),
        )
        return holders
