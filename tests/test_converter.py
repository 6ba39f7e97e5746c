"""Asset converter: liquidity guard, quote reconciliation, slippage bound."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from holder_rewards.distribution.converter import AssetConverter
from holder_rewards.errors import (
    InsufficientLiquidityError,
    PoolUnavailableError,
    RateLimitedError,
    SlippageExceededError,
    SwapFailedError,
)

from tests.conftest import make_test_config
from tests.mocks import FakePoolBackend


def _converter(pool, clock, **overrides) -> AssetConverter:
    return AssetConverter(pool, make_test_config(**overrides), clock)


async def test_check_liquidity_requires_multiple_of_amount(clock):
    conv = _converter(FakePoolBackend(source_reserve=Decimal(199)), clock)
    with pytest.raises(InsufficientLiquidityError):
        await conv.check_liquidity(Decimal(100))

    conv = _converter(FakePoolBackend(source_reserve=Decimal(200)), clock)
    snapshot = await conv.check_liquidity(Decimal(100))
    assert snapshot.source_reserve == Decimal(200)


async def test_quote_reports_effective_price(clock):
    conv = _converter(FakePoolBackend(quote_output=Decimal("0.5")), clock)
    quote = await conv.quote(Decimal(10))
    assert quote.estimated_output == Decimal("0.5")
    assert quote.effective_price == Decimal("0.05")


def test_min_acceptable_output_one_percent(clock):
    conv = _converter(FakePoolBackend(), clock, slippage_tolerance_bps=100)
    assert conv.min_acceptable_output(Decimal(1)) == Decimal("0.99")


@pytest.mark.parametrize("realized", ["1.0", "0.995", "0.99"])
async def test_output_within_tolerance_accepted(signer, clock, realized):
    pool = FakePoolBackend(quote_output=Decimal(1), swap_output=Decimal(realized))
    result = await _converter(pool, clock).convert(Decimal(10), signer)

    assert result.output_amount == Decimal(realized)
    assert result.quoted_output == Decimal(1)
    assert pool.swap_calls == [(Decimal(10), Decimal("0.99"))]


async def test_output_below_tolerance_rejected(signer, clock):
    pool = FakePoolBackend(quote_output=Decimal(1), swap_output=Decimal("0.97"))
    with pytest.raises(SlippageExceededError):
        await _converter(pool, clock).convert(Decimal(10), signer)


async def test_realized_output_used_not_quote(signer, clock):
    pool = FakePoolBackend(quote_output=Decimal(1), swap_output=Decimal("1.004"))
    result = await _converter(pool, clock).convert(Decimal(10), signer)
    assert result.output_amount == Decimal("1.004")
    assert result.effective_price == Decimal("0.1004")


async def test_pool_unavailable(signer, clock):
    conv = _converter(FakePoolBackend(unavailable=True), clock)
    with pytest.raises(PoolUnavailableError):
        await conv.convert(Decimal(10), signer)


async def test_swap_error_wrapped(signer, clock):
    pool = FakePoolBackend(swap_error=RuntimeError("simulation failed"))
    with pytest.raises(SwapFailedError, match="simulation failed"):
        await _converter(pool, clock).convert(Decimal(10), signer)


async def test_insufficient_liquidity_stops_before_swap(signer, clock):
    pool = FakePoolBackend(source_reserve=Decimal(5))
    with pytest.raises(InsufficientLiquidityError):
        await _converter(pool, clock).convert(Decimal(10), signer)
    assert pool.swap_calls == []


class FlakyPool(FakePoolBackend):
    def __init__(self, failures: list[Exception]) -> None:
        super().__init__()
        self.failures = failures

    async def load_pool(self, pool_id):
        if self.failures:
            raise self.failures.pop(0)
        return await super().load_pool(pool_id)


async def test_load_pool_retries_transient_failures(clock):
    pool = FlakyPool([RateLimitedError("429"), asyncio.TimeoutError()])
    snapshot = await _converter(pool, clock).load_pool()

    assert snapshot.pool_id
    assert clock.sleeps_ms == [2000, 4000]


async def test_load_pool_gives_up_after_budget(clock):
    pool = FlakyPool([RateLimitedError("429")] * 10)
    with pytest.raises(PoolUnavailableError):
        await _converter(pool, clock, max_retries=3).load_pool()
    assert clock.sleeps_ms == [2000, 4000]


class SlowSwapPool(FakePoolBackend):
    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay

    async def swap(self, pool, amount_in, min_out, signer):
        await asyncio.sleep(self.delay)
        return await super().swap(pool, amount_in, min_out, signer)


async def test_swap_outlasting_rpc_timeout_completes(signer, clock):
    pool = SlowSwapPool(delay=0.2)
    conv = _converter(pool, clock, rpc_timeout=0.1, confirm_timeout=5.0)
    result = await conv.convert(Decimal(10), signer)

    assert result.output_amount == Decimal(1)
    assert len(pool.swap_calls) == 1


async def test_backend_confirm_timeout_is_swap_failure(signer, clock):
    pool = FakePoolBackend(swap_error=asyncio.TimeoutError("confirmation timed out"))
    with pytest.raises(SwapFailedError, match="check the reward balance"):
        await _converter(pool, clock).convert(Decimal(10), signer)
