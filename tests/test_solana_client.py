"""SolanaLedgerClient against a stubbed RPC connection."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest
from solana.exceptions import SolanaRpcException
from solana.rpc.core import RPCException
from solders.signature import Signature
from solders.transaction_status import TransactionConfirmationStatus
from spl.token.constants import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID

from holder_rewards.errors import (
    DistributorError,
    RateLimitedError,
    StateExpiredError,
    TransientNetworkError,
)
from holder_rewards.interfaces.ledger import RecentReference
from holder_rewards.models.submission import AttemptOutcome
from holder_rewards.solana.client import SolanaLedgerClient, _translate

from tests.conftest import TOKEN_MINT, make_test_config

CONFIRMED = SimpleNamespace(err=None, confirmation_status=TransactionConfirmationStatus.Confirmed)
PROCESSED = SimpleNamespace(err=None, confirmation_status=TransactionConfirmationStatus.Processed)
ERRORED = SimpleNamespace(err="InstructionError", confirmation_status=TransactionConfirmationStatus.Confirmed)


class StubRpc:
    """Stands in for solana-py's AsyncClient."""

    def __init__(self) -> None:
        self.statuses: list = []
        self.height = 10
        self.balance_error: Exception | None = None
        self.program_account_calls: list[dict] = []

    async def get_program_accounts(self, program_id, encoding, filters):
        self.program_account_calls.append(
            {"program_id": program_id, "encoding": encoding, "filters": filters}
        )
        account = SimpleNamespace(account=SimpleNamespace(data=b"\x01\x02"))
        return SimpleNamespace(value=[account])

    async def get_signature_statuses(self, signatures):
        status = self.statuses.pop(0) if self.statuses else None
        return SimpleNamespace(value=[status])

    async def get_block_height(self):
        return SimpleNamespace(value=self.height)

    async def get_token_account_balance(self, pubkey):
        if self.balance_error is not None:
            raise self.balance_error
        return SimpleNamespace(value=SimpleNamespace(amount="1500000001", decimals=9))

    async def close(self):
        pass


@pytest.fixture
def rpc():
    return StubRpc()


@pytest.fixture
async def client(rpc, clock):
    c = SolanaLedgerClient(make_test_config(confirm_poll_interval=2.0), clock=clock)
    await c.close()
    c._client = rpc
    return c


SIG = str(Signature.new_unique())
REF = RecentReference(blockhash="11111111111111111111111111111111", last_valid_block_height=1000)


# ── Reads ────────────────────────────────────────────────────────


async def test_token_balance_in_whole_tokens(client):
    assert await client.get_token_balance(TOKEN_MINT) == Decimal("1.500000001")


async def test_missing_token_account_is_zero(client, rpc):
    rpc.balance_error = RPCException("Invalid param: could not find account")
    assert await client.get_token_balance(TOKEN_MINT) == 0


async def test_classic_token_accounts_filtered_by_size(client, rpc):
    data = await client.get_token_accounts(TOKEN_MINT, TOKEN_PROGRAM_ID)

    assert data == [b"\x01\x02"]
    [call] = rpc.program_account_calls
    assert call["encoding"] == "base64"
    assert call["filters"][0] == 165
    assert call["filters"][1].offset == 0


async def test_token_2022_accounts_not_size_filtered(client, rpc):
    await client.get_token_accounts(TOKEN_MINT, TOKEN_2022_PROGRAM_ID)
    [call] = rpc.program_account_calls
    assert len(call["filters"]) == 1


# ── Confirmation ─────────────────────────────────────────────────


async def test_confirm_polls_until_confirmed(client, rpc, clock):
    rpc.statuses = [None, PROCESSED, CONFIRMED]
    assert await client.confirm(SIG, REF, timeout=60) is AttemptOutcome.CONFIRMED
    assert clock.sleeps == [2.0, 2.0]


async def test_confirm_reports_on_chain_error(client, rpc):
    rpc.statuses = [ERRORED]
    assert await client.confirm(SIG, REF, timeout=60) is AttemptOutcome.FAILED


async def test_confirm_detects_expired_blockhash(client, rpc):
    rpc.height = 1001
    assert await client.confirm(SIG, REF, timeout=60) is AttemptOutcome.EXPIRED


async def test_confirm_times_out(client, clock):
    with pytest.raises(asyncio.TimeoutError):
        await client.confirm(SIG, REF, timeout=3)
    assert clock.sleeps == [2.0, 2.0]


async def test_signature_outcome_unknown(client):
    assert await client.get_signature_outcome(SIG) is None


# ── Error translation ────────────────────────────────────────────


def _status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://api.devnet.solana.com")
    return httpx.HTTPStatusError(
        f"HTTP {code}", request=request, response=httpx.Response(code, request=request)
    )


def test_translate_http_429():
    exc = SolanaRpcException("request failed")
    exc.__cause__ = _status_error(429)
    assert isinstance(_translate(exc), RateLimitedError)


def test_translate_rate_limit_text():
    assert isinstance(_translate(RPCException("Too Many Requests")), RateLimitedError)


def test_translate_expired_blockhash():
    exc = RPCException("Transaction simulation failed: Blockhash not found")
    assert isinstance(_translate(exc), StateExpiredError)


def test_translate_transport_failure():
    exc = SolanaRpcException("request failed")
    exc.__cause__ = httpx.ConnectTimeout("timed out")
    translated = _translate(exc)
    assert isinstance(translated, TransientNetworkError)
    assert not isinstance(translated, RateLimitedError)


def test_translate_other_errors():
    translated = _translate(RPCException("custom program error: 0x1"))
    assert type(translated) is DistributorError
