"""CLI commands that run without a live ledger."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest
from click.testing import CliRunner
from solders.keypair import Keypair

from holder_rewards.cli import cli
from holder_rewards.models.events import AttemptEvent
from holder_rewards.models.submission import CycleSummary
from holder_rewards.storage.sqlite import SQLiteStateStore

from tests.conftest import POOL_ID, REWARD_MINT, TOKEN_MINT


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("SECRET", "RPC_URL", "KEYPAIR_PATH", "DB_PATH", "LOG_LEVEL"):
        monkeypatch.delenv(f"HOLDER_REWARDS_{name}", raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "distributor.toml"
    path.write_text(
        f"""
[network]
rpc_url = "https://api.devnet.solana.com"

[token]
mint = "{TOKEN_MINT}"

[reward]
mint = "{REWARD_MINT}"
pool_id = "{POOL_ID}"

[storage]
db_path = "{tmp_path / 'state.db'}"
""",
        encoding="utf-8",
    )
    return path


def _invoke(*args: str):
    return CliRunner().invoke(cli, list(args))


def _seed(db_path) -> None:
    async def _go():
        store = SQLiteStateStore(str(db_path))
        await store.initialize()
        try:
            await store.save_cycle_summary(
                CycleSummary(
                    cycle_id="abcdef0123456789",
                    started_at="2026-03-01T12:00:00+00:00",
                    holders_total=4,
                    holders_qualified=3,
                    total_reward=Decimal("0.5"),
                    aborted_reason="InsufficientLiquidityError: dry pool",
                )
            )
            await store.record_attempt(
                AttemptEvent(
                    cycle_id="abcdef0123456789", batch_id=1, attempt=1,
                    outcome="rate_limited", backoff_ms=2000, error="429",
                )
            )
        finally:
            await store.close()

    asyncio.run(_go())


def test_status_masks_secret(config_file, monkeypatch):
    secret = str(Keypair())
    monkeypatch.setenv("HOLDER_REWARDS_SECRET", secret)

    result = _invoke("-c", str(config_file), "status")

    assert result.exit_code == 0, result.output
    assert TOKEN_MINT in result.output
    assert "***configured***" in result.output
    assert secret not in result.output


def test_missing_config_file(tmp_path):
    result = _invoke("-c", str(tmp_path / "nope.toml"), "status")
    assert result.exit_code == 1
    assert "not found" in result.output


def test_run_requires_signer(config_file):
    result = _invoke("-c", str(config_file), "run", "--yes")
    assert result.exit_code == 1
    assert "keypair" in result.output


def test_plan_rejects_bad_amount(config_file, monkeypatch):
    monkeypatch.setenv("HOLDER_REWARDS_SECRET", str(Keypair()))
    result = _invoke("-c", str(config_file), "plan", "--amount", "lots")
    assert result.exit_code == 2
    assert "not a number" in result.output


def test_history_empty(config_file):
    result = _invoke("-c", str(config_file), "history")
    assert result.exit_code == 0, result.output
    assert "No cycles recorded." in result.output


def test_history_and_attempts(config_file, tmp_path):
    _seed(tmp_path / "state.db")

    history = _invoke("-c", str(config_file), "history", "-n", "5")
    assert history.exit_code == 0, history.output
    assert "abcdef01" in history.output
    assert "aborted" in history.output
    assert "error: InsufficientLiquidityError: dry pool" in history.output

    attempts = _invoke("-c", str(config_file), "attempts", "abcdef0123456789")
    assert attempts.exit_code == 0, attempts.output
    assert "rate_limited" in attempts.output
    assert "backoff 2000ms" in attempts.output

    none = _invoke("-c", str(config_file), "attempts", "unknown")
    assert "No attempts recorded for unknown." in none.output
