"""PoolBackend protocol - liquidity pool access for fee conversion."""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol

from solders.keypair import Keypair

from holder_rewards.models.distribution import ConversionResult, PoolSnapshot


class PoolBackend(Protocol):
    async def load_pool(self, pool_id: str) -> PoolSnapshot:
        """Load current pool state. Raises PoolUnavailableError if it cannot be loaded."""
        ...

    async def quote(self, pool: PoolSnapshot, amount_in: Decimal) -> Decimal:
        """Estimated reward output for ``amount_in`` source tokens."""
        ...

    async def swap(
        self,
        pool: PoolSnapshot,
        amount_in: Decimal,
        min_out: Decimal,
        signer: Keypair,
    ) -> ConversionResult:
        """Execute the swap. ``output_amount`` is the realized balance delta."""
        ...
