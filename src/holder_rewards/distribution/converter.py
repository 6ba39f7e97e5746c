"""Asset converter - swaps collected fees into the reward asset through a pool."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Awaitable, Callable, TypeVar

from solders.keypair import Keypair

from holder_rewards.clock import Clock, SystemClock, backoff_ms
from holder_rewards.errors import (
    InsufficientLiquidityError,
    LiquidityError,
    PoolUnavailableError,
    SlippageExceededError,
    SwapFailedError,
    TransientNetworkError,
)
from holder_rewards.interfaces.pool import PoolBackend
from holder_rewards.models.config import DistributorConfig
from holder_rewards.models.distribution import (
    ConversionResult,
    PoolSnapshot,
    QuoteResult,
)
from holder_rewards.units import truncate

log = logging.getLogger(__name__)

T = TypeVar("T")


class AssetConverter:
    """Converts a source-token amount into the reward asset.

    Read-only pool calls (load, quote) are retried on timeouts and transient
    network errors. The swap itself is never retried: a swap that timed out
    may still have executed.
    """

    def __init__(
        self,
        backend: PoolBackend,
        config: DistributorConfig,
        clock: Clock | None = None,
    ) -> None:
        self._backend = backend
        self._pool_id = config.pool_id
        self._liquidity_multiple = config.liquidity_multiple
        self._slippage_bps = config.slippage_tolerance_bps
        self._reward_decimals = config.reward_decimals
        self._timeout = config.rpc_timeout
        self._max_retries = config.max_retries
        self._initial_backoff_ms = config.initial_backoff_ms
        self._max_backoff_ms = config.max_backoff_ms
        self._clock = clock or SystemClock()

    # ── Pool ───────────────────────────────────────────────

    async def load_pool(self) -> PoolSnapshot:
        try:
            return await self._retrying(
                "load_pool", lambda: self._backend.load_pool(self._pool_id)
            )
        except LiquidityError:
            raise
        except Exception as exc:
            raise PoolUnavailableError(
                f"pool {self._pool_id[:8]} could not be loaded: {exc}"
            ) from exc

    async def check_liquidity(
        self, amount: Decimal, pool: PoolSnapshot | None = None
    ) -> PoolSnapshot:
        """Pre-flight guard: the source reserve must cover ``liquidity_multiple`` x amount."""
        pool = pool or await self.load_pool()
        required = amount * self._liquidity_multiple
        if pool.source_reserve < required:
            raise InsufficientLiquidityError(
                f"pool reserve {pool.source_reserve} < {required} "
                f"({self._liquidity_multiple}x requested {amount})"
            )
        log.debug(
            "Liquidity ok: reserve %s covers %sx %s",
            pool.source_reserve, self._liquidity_multiple, amount,
        )
        return pool

    async def quote(
        self, amount: Decimal, pool: PoolSnapshot | None = None
    ) -> QuoteResult:
        """Advisory estimate computed off a live pool snapshot."""
        pool = pool or await self.load_pool()
        try:
            estimated = await self._retrying(
                "quote", lambda: self._backend.quote(pool, amount)
            )
        except LiquidityError:
            raise
        except Exception as exc:
            raise PoolUnavailableError(f"quote failed: {exc}") from exc
        price = estimated / amount if amount > 0 else Decimal(0)
        return QuoteResult(
            input_amount=amount, estimated_output=estimated, effective_price=price
        )

    def min_acceptable_output(self, quoted_output: Decimal) -> Decimal:
        """Quote minus the slippage tolerance, floored to the reward asset's base unit."""
        factor = Decimal(10_000 - self._slippage_bps) / Decimal(10_000)
        return truncate(quoted_output * factor, self._reward_decimals)

    # ── Swap ───────────────────────────────────────────────

    async def swap(
        self,
        amount: Decimal,
        min_out: Decimal,
        signer: Keypair,
        pool: PoolSnapshot | None = None,
    ) -> ConversionResult:
        """Execute the swap and reconcile the realized output against ``min_out``.

        The swap spans several calls plus on-chain confirmation, so it is
        bounded by the backend's own per-call and confirmation timeouts
        rather than a single ``rpc_timeout``.
        """
        pool = pool or await self.load_pool()
        log.info("Swapping %s (min out %s) via pool %s", amount, min_out, pool.pool_id[:8])
        try:
            result = await self._backend.swap(pool, amount, min_out, signer)
        except LiquidityError:
            raise
        except asyncio.TimeoutError as exc:
            raise SwapFailedError(
                f"swap timed out ({exc}); check the reward balance before re-running"
            ) from exc
        except Exception as exc:
            raise SwapFailedError(f"swap failed: {exc}") from exc

        if result.output_amount < min_out:
            raise SlippageExceededError(
                f"realized output {result.output_amount} below minimum {min_out}"
            )
        if result.output_amount <= 0:
            raise SwapFailedError("swap produced no reward asset")

        log.info(
            "Swap complete: %s -> %s (price %s, tx %s)",
            result.input_amount,
            result.output_amount,
            result.effective_price,
            result.signature[:16] if result.signature else "?",
        )
        return result

    async def convert(self, amount: Decimal, signer: Keypair) -> ConversionResult:
        """check_liquidity -> quote -> swap, all against one pool snapshot."""
        pool = await self.check_liquidity(amount)
        quote = await self.quote(amount, pool)
        min_out = self.min_acceptable_output(quote.estimated_output)
        result = await self.swap(amount, min_out, signer, pool)
        return ConversionResult(
            input_amount=result.input_amount,
            output_amount=result.output_amount,
            effective_price=result.effective_price,
            quoted_output=quote.estimated_output,
            signature=result.signature,
        )

    # ── Internals ──────────────────────────────────────────

    async def _retrying(self, what: str, call: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            try:
                return await asyncio.wait_for(call(), self._timeout)
            except (asyncio.TimeoutError, TransientNetworkError) as exc:
                if attempt + 1 >= self._max_retries:
                    raise
                delay = backoff_ms(attempt, self._initial_backoff_ms, self._max_backoff_ms)
                log.warning(
                    "%s transient failure (%s), retrying in %dms",
                    what, type(exc).__name__, delay,
                )
                await self._clock.sleep(delay / 1000)
                attempt += 1
