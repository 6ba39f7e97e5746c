"""Configuration loading: TOML file + environment variables."""

from __future__ import annotations

import os
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]

from holder_rewards.errors import ConfigurationError
from holder_rewards.models.config import DistributorConfig, TokenProgram


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "HOLDER_REWARDS_",
) -> DistributorConfig:
    """Load distributor configuration from a TOML file and env vars.

    Priority (highest wins):
        1. Environment variables (HOLDER_REWARDS_SECRET, etc.)
        2. TOML config file
        3. Defaults from DistributorConfig

    The returned config is frozen. Call ``validate()`` before use.
    """
    raw: dict = {}
    if config_path is not None:
        p = Path(config_path).expanduser()
        if not p.exists():
            raise ConfigurationError(f"config file not found: {p}")
        with open(p, "rb") as f:
            raw = tomllib.load(f)

    kw: dict[str, Any] = {}

    # ── Network section ────────────────────────────────────
    network = raw.get("network", {})
    if v := network.get("rpc_url"):
        kw["rpc_url"] = str(v)
    if v := network.get("commitment"):
        kw["commitment"] = str(v)
    for key in ("rpc_timeout", "confirm_timeout", "confirm_poll_interval"):
        if (v := network.get(key)) is not None:
            kw[key] = float(v)

    # ── Token section ──────────────────────────────────────
    token = raw.get("token", {})
    if v := token.get("mint"):
        kw["token_mint"] = str(v)
    if (v := token.get("decimals")) is not None:
        kw["token_decimals"] = int(v)
    if v := token.get("token_program"):
        kw["token_program"] = _enum(TokenProgram, v, "token.token_program")
    excluded = set(str(w) for w in token.get("excluded_wallets", []))
    if v := token.get("excluded_wallets_file"):
        excluded |= load_excluded_wallets(v)
    kw["excluded_wallets"] = frozenset(excluded)

    # ── Reward section ─────────────────────────────────────
    reward = raw.get("reward", {})
    if v := reward.get("mint"):
        kw["reward_mint"] = str(v)
    if (v := reward.get("decimals")) is not None:
        kw["reward_decimals"] = int(v)
    if v := reward.get("token_program"):
        kw["reward_token_program"] = _enum(TokenProgram, v, "reward.token_program")
    if v := reward.get("pool_id"):
        kw["pool_id"] = str(v)
    for key in ("reward_share_pct", "liquidity_multiple"):
        if (v := reward.get(key)) is not None:
            kw[key] = _decimal(v, f"reward.{key}")
    if (v := reward.get("slippage_tolerance_bps")) is not None:
        kw["slippage_tolerance_bps"] = int(v)

    # ── Distribution section ───────────────────────────────
    dist = raw.get("distribution", {})
    for key in ("minimum_holding_threshold", "minimum_payout_threshold"):
        if (v := dist.get(key)) is not None:
            kw[key] = _decimal(v, f"distribution.{key}")
    if (v := dist.get("carry_forward_remainder")) is not None:
        kw["carry_forward_remainder"] = bool(v)

    # ── Submission section ─────────────────────────────────
    sub = raw.get("submission", {})
    for key in (
        "max_transaction_size_bytes",
        "max_retries",
        "max_expiry_retries",
        "initial_backoff_ms",
        "max_backoff_ms",
        "inter_batch_spacing_ms",
        "concurrency_limit",
        "compute_unit_price_micro_lamports",
    ):
        if (v := sub.get(key)) is not None:
            kw[key] = int(v)

    # ── Wallet / storage / logging ─────────────────────────
    wallet = raw.get("wallet", {})
    if v := wallet.get("keypair_path"):
        kw["keypair_path"] = str(v)
    if v := wallet.get("keypair_secret"):
        kw["keypair_secret"] = str(v)
    if v := raw.get("storage", {}).get("db_path"):
        kw["db_path"] = str(v)
    if v := raw.get("logging", {}).get("log_level"):
        kw["log_level"] = str(v)

    # ── Environment variable overrides (highest priority) ──
    if secret := os.environ.get(f"{env_prefix}SECRET"):
        kw["keypair_secret"] = secret
    if rpc := os.environ.get(f"{env_prefix}RPC_URL"):
        kw["rpc_url"] = rpc
    if path := os.environ.get(f"{env_prefix}KEYPAIR_PATH"):
        kw["keypair_path"] = path
    if db := os.environ.get(f"{env_prefix}DB_PATH"):
        kw["db_path"] = db
    if level := os.environ.get(f"{env_prefix}LOG_LEVEL"):
        kw["log_level"] = level

    # Expand ~ in paths
    db_path = kw.get("db_path", DistributorConfig.db_path)
    if db_path != ":memory:":
        kw["db_path"] = str(Path(db_path).expanduser())
    if kw.get("keypair_path"):
        kw["keypair_path"] = str(Path(kw["keypair_path"]).expanduser())

    return DistributorConfig(**kw)


def load_excluded_wallets(path: str | Path) -> set[str]:
    """One address per line; blank lines and '#' comments are ignored."""
    p = Path(path).expanduser()
    if not p.exists():
        raise ConfigurationError(f"excluded wallets file not found: {p}")
    wallets: set[str] = set()
    for line in p.read_text(encoding="utf-8").splitlines():
        line = line.split("#", 1)[0].strip()
        if line:
            wallets.add(line)
    return wallets


def _decimal(value: object, name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ConfigurationError(f"{name} is not a number: {value!r}") from None


def _enum(enum_cls, value: object, name: str):
    try:
        return enum_cls(str(value))
    except ValueError:
        raise ConfigurationError(f"{name} has unknown value {value!r}") from None
