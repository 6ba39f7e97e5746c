"""Shared fixtures for holder_rewards tests."""

from __future__ import annotations

from decimal import Decimal

import pytest
from pytest_metadata.plugin import metadata_key
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from holder_rewards.models.config import DistributorConfig
from holder_rewards.storage.sqlite import SQLiteStateStore

from tests.mocks import FakeClock, FakeLedger, FakePoolBackend, RecordingSink

TOKEN_MINT = str(Pubkey.from_bytes(bytes([7]) * 32))
REWARD_MINT = "3NZ9JMVBmGAqocybic2c7LQCJScmgsAZ6vQqTDzcqmJh"  # WBTC (Portal)
POOL_ID = str(Pubkey.from_bytes(bytes([9]) * 32))

EXPLORER_BASE = "https://solscan.io"


def solscan_link(kind: str, id: str, label: str | None = None) -> str:
    """Build an HTML anchor to solscan for the report."""
    url = f"{EXPLORER_BASE}/{kind}/{id}"
    text = label or f"{id[:8]}...{id[-4:]}"
    return f'<a href="{url}" target="_blank">{text}</a>'


# ── Report metadata ──────────────────────────────────────────────


def pytest_configure(config):
    """Add run info to the HTML report Environment table."""
    meta = config.stash.setdefault(metadata_key, {})
    meta["Ledger"] = "Solana (mocked)"
    meta["Token Mint"] = TOKEN_MINT
    meta["Reward Mint"] = REWARD_MINT


def pytest_html_results_summary(prefix, summary, postfix):
    prefix.append(
        '<div style="margin:8px 0;padding:10px;font-family:monospace;font-size:13px;">'
        f'Token: {solscan_link("token", TOKEN_MINT)}<br/>'
        f'Reward: {solscan_link("token", REWARD_MINT)}'
        "</div>"
    )


def make_test_config(**overrides) -> DistributorConfig:
    """Build a DistributorConfig suitable for testing."""
    defaults = dict(
        rpc_url="https://api.devnet.solana.com",
        token_mint=TOKEN_MINT,
        token_decimals=9,
        reward_mint=REWARD_MINT,
        reward_decimals=8,
        pool_id=POOL_ID,
        minimum_holding_threshold=Decimal(0),
        minimum_payout_threshold=Decimal(0),
        max_retries=5,
        initial_backoff_ms=2000,
        max_backoff_ms=32000,
        inter_batch_spacing_ms=5000,
        rpc_timeout=5.0,
        confirm_timeout=10.0,
        db_path=":memory:",
    )
    defaults.update(overrides)
    return DistributorConfig(**defaults)


@pytest.fixture
def test_config():
    """Default DistributorConfig for tests."""
    return make_test_config()


@pytest.fixture
async def store():
    """Initialized in-memory SQLiteStateStore."""
    s = SQLiteStateStore(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def signer():
    return Keypair()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def pool():
    return FakePoolBackend()


@pytest.fixture
def sink():
    return RecordingSink()
