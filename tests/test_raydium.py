"""Raydium pool backend over a mocked HTTP transport."""

from __future__ import annotations

import base64
import json
from decimal import Decimal

import httpx
import pytest
from solders.hash import Hash
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from holder_rewards.errors import (
    PoolUnavailableError,
    RateLimitedError,
    SlippageExceededError,
    SwapFailedError,
    TransientNetworkError,
)
from holder_rewards.pool.raydium import RaydiumPoolBackend, _slippage_bps_for
from holder_rewards.solana.instructions import associated_token_address, compute_price_ix

from tests.conftest import POOL_ID, REWARD_MINT, TOKEN_MINT, make_test_config
from tests.mocks import FakeLedger

API = "https://api.test"
SWAP = "https://swap.test"


def _pool_info(mint_a=TOKEN_MINT, mint_b=REWARD_MINT, dec_a=9, dec_b=8) -> dict:
    return {
        "id": POOL_ID,
        "mintA": {"address": mint_a, "decimals": dec_a},
        "mintB": {"address": mint_b, "decimals": dec_b},
        "mintAmountA": 1000.5,
        "mintAmountB": 2.5,
        "feeRate": 0.0025,
    }


class RaydiumStub:
    """Routes requests to canned Raydium API responses and records them."""

    def __init__(self, info: dict | None = None, output_amount: str = "150000000") -> None:
        self.info = info if info is not None else _pool_info()
        self.output_amount = output_amount
        self.status = 200
        self.swap_transactions: list[str] = []
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status != 200:
            return httpx.Response(self.status)
        path = request.url.path
        if path == "/pools/info/ids":
            return httpx.Response(200, json={"success": True, "data": [self.info] if self.info else []})
        if path == "/compute/swap-base-in":
            return httpx.Response(
                200,
                json={
                    "id": "q1",
                    "success": True,
                    "data": {"outputAmount": self.output_amount, "slippageBps": int(request.url.params["slippageBps"])},
                },
            )
        if path == "/transaction/swap-base-in":
            data = [{"transaction": tx} for tx in self.swap_transactions]
            return httpx.Response(200, json={"success": True, "data": data})
        return httpx.Response(404)

    def posted(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.method == "POST"]


def _backend(stub: RaydiumStub, ledger=None) -> RaydiumPoolBackend:
    return RaydiumPoolBackend(
        ledger or FakeLedger(),
        make_test_config(),
        api_url=API,
        swap_url=SWAP,
        transport=httpx.MockTransport(stub),
    )


# ── load_pool ────────────────────────────────────────────────────


async def test_load_pool_maps_sides():
    pool = await _backend(RaydiumStub()).load_pool(POOL_ID)

    assert pool.source_mint == TOKEN_MINT
    assert pool.reward_mint == REWARD_MINT
    assert pool.source_reserve == Decimal("1000.5")
    assert pool.reward_reserve == Decimal("2.5")
    assert pool.source_decimals == 9
    assert pool.reward_decimals == 8
    assert pool.fee_rate == Decimal("0.0025")


async def test_load_pool_reversed_pair():
    stub = RaydiumStub(_pool_info(REWARD_MINT, TOKEN_MINT, 8, 9))
    pool = await _backend(stub).load_pool(POOL_ID)

    assert pool.source_mint == TOKEN_MINT
    assert pool.source_reserve == Decimal("2.5")
    assert pool.source_decimals == 9


async def test_load_pool_wrong_pair():
    stub = RaydiumStub(_pool_info(mint_b=str(Pubkey.new_unique())))
    with pytest.raises(PoolUnavailableError, match="does not pair"):
        await _backend(stub).load_pool(POOL_ID)


async def test_load_pool_unknown():
    with pytest.raises(PoolUnavailableError, match="not found"):
        await _backend(RaydiumStub(info={})).load_pool(POOL_ID)


@pytest.mark.parametrize(
    "status, error",
    [
        (429, RateLimitedError),
        (503, TransientNetworkError),
        (404, PoolUnavailableError),
    ],
)
async def test_http_errors_mapped(status, error):
    stub = RaydiumStub()
    stub.status = status
    with pytest.raises(error):
        await _backend(stub).load_pool(POOL_ID)


async def test_api_failure_flag():
    def handler(request):
        return httpx.Response(200, json={"success": False, "msg": "REQ_POOL_ID_ERROR"})

    backend = RaydiumPoolBackend(
        FakeLedger(), make_test_config(), api_url=API, swap_url=SWAP,
        transport=httpx.MockTransport(handler),
    )
    with pytest.raises(PoolUnavailableError, match="REQ_POOL_ID_ERROR"):
        await backend.load_pool(POOL_ID)


# ── quote ────────────────────────────────────────────────────────


async def test_quote_in_reward_units():
    stub = RaydiumStub(output_amount="150000000")
    backend = _backend(stub)
    pool = await backend.load_pool(POOL_ID)

    assert await backend.quote(pool, Decimal(100)) == Decimal("1.5")

    params = stub.requests[-1].url.params
    assert params["inputMint"] == TOKEN_MINT
    assert params["outputMint"] == REWARD_MINT
    assert params["amount"] == "100000000000"
    assert params["slippageBps"] == "100"


# ── swap ─────────────────────────────────────────────────────────


class SwapLedger(FakeLedger):
    """Credits the reward balance when a transaction is submitted."""

    def __init__(self, credit: Decimal) -> None:
        super().__init__()
        self.credit = credit

    async def submit(self, raw_transaction: bytes) -> str:
        signature = await super().submit(raw_transaction)
        for account in self.balances:
            self.balances[account] += self.credit
        return signature


def _unsigned_swap_tx(payer: Pubkey) -> str:
    tx = Transaction.new_unsigned(Message([compute_price_ix(1)], payer))
    return base64.b64encode(bytes(tx)).decode()


async def test_swap_reports_balance_delta(signer):
    ledger = SwapLedger(credit=Decimal("1.48"))
    reward_account = associated_token_address(
        signer.pubkey(), Pubkey.from_string(REWARD_MINT)
    )
    ledger.balances[str(reward_account)] = Decimal("0.25")
    stub = RaydiumStub(output_amount="150000000")
    stub.swap_transactions = [_unsigned_swap_tx(signer.pubkey())]
    backend = _backend(stub, ledger)
    pool = await backend.load_pool(POOL_ID)

    result = await backend.swap(pool, Decimal(100), Decimal("1.485"), signer)

    assert result.output_amount == Decimal("1.48")
    assert result.quoted_output == Decimal("1.5")
    assert result.signature == ledger.signatures[-1]
    [payload] = stub.posted()
    assert payload["wallet"] == str(signer.pubkey())
    assert payload["outputAccount"] == str(reward_account)
    assert payload["swapResponse"]["data"]["slippageBps"] == 100
    assert len(ledger.submitted) == 1

    sent = Transaction.from_bytes(ledger.submitted[0])
    assert sent.message.recent_blockhash == Hash.from_string(ledger.references[-1].blockhash)
    assert sent.signatures[0] != Signature.default()


async def test_swap_refuses_when_fresh_quote_misses_minimum(signer):
    ledger = FakeLedger()
    stub = RaydiumStub(output_amount="90000000")
    backend = _backend(stub, ledger)
    pool = await backend.load_pool(POOL_ID)

    with pytest.raises(SlippageExceededError):
        await backend.swap(pool, Decimal(100), Decimal("0.99"), signer)

    assert stub.posted() == []
    assert ledger.submitted == []


async def test_swap_creates_missing_reward_account(signer):
    ledger = FakeLedger()
    reward_account = associated_token_address(
        signer.pubkey(), Pubkey.from_string(REWARD_MINT)
    )
    ledger.missing_accounts.add(str(reward_account))
    stub = RaydiumStub()
    backend = _backend(stub, ledger)
    pool = await backend.load_pool(POOL_ID)

    with pytest.raises(SwapFailedError, match="no transactions"):
        await backend.swap(pool, Decimal(100), Decimal("1.0"), signer)

    assert len(ledger.submitted) == 1


@pytest.mark.parametrize(
    "quoted, min_out, bps",
    [
        ("1.0", "0.99", 100),
        ("1.5", "1.485", 100),
        ("1.0", "1.0", 0),
        ("1.0", "1.2", 0),
        ("0", "0.5", 0),
        ("3", "2.99999999", 0),
    ],
)
def test_slippage_bps_for(quoted, min_out, bps):
    assert _slippage_bps_for(Decimal(quoted), Decimal(min_out)) == bps
