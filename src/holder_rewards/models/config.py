"""Configuration model for the distributor."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from holder_rewards.errors import ConfigurationError


class TokenProgram(str, Enum):
    """Which SPL token program owns the distributed token's accounts."""

    SPL_TOKEN = "spl-token"
    TOKEN_2022 = "token-2022"


@dataclass(frozen=True)
class DistributorConfig:
    """Complete distributor configuration. Loaded once, never mutated."""

    # Network
    rpc_url: str = ""
    commitment: str = "confirmed"
    rpc_timeout: float = 30.0  # seconds per RPC call
    confirm_timeout: float = 60.0  # seconds to wait for confirmation
    confirm_poll_interval: float = 2.0

    # Distributed token
    token_mint: str = ""
    token_decimals: int = 9
    token_program: TokenProgram = TokenProgram.SPL_TOKEN
    excluded_wallets: frozenset[str] = field(default_factory=frozenset)

    # Reward asset and conversion
    reward_mint: str = ""
    reward_decimals: int = 8  # WBTC
    reward_token_program: TokenProgram = TokenProgram.SPL_TOKEN
    pool_id: str = ""
    reward_share_pct: Decimal = Decimal(50)  # share of collected fees converted per cycle
    liquidity_multiple: Decimal = Decimal(2)
    slippage_tolerance_bps: int = 100

    # Distribution policy
    minimum_holding_threshold: Decimal = Decimal(0)
    minimum_payout_threshold: Decimal = Decimal(0)
    carry_forward_remainder: bool = False

    # Submission
    max_transaction_size_bytes: int = 1232
    max_retries: int = 5
    max_expiry_retries: int = 3
    initial_backoff_ms: int = 2000
    max_backoff_ms: int = 32000
    inter_batch_spacing_ms: int = 5000
    concurrency_limit: int = 8
    compute_unit_price_micro_lamports: int = 50_000

    # Wallet
    keypair_path: str = ""
    keypair_secret: str = ""  # base58, loaded from HOLDER_REWARDS_SECRET

    # Storage / logging
    db_path: str = "~/.holder_rewards/state.db"
    log_level: str = "info"

    @property
    def has_signer(self) -> bool:
        return bool(self.keypair_secret or self.keypair_path)

    def validate(self, require_signer: bool = False) -> None:
        """Raise ConfigurationError on missing or unsafe values."""
        missing = [
            name
            for name in ("rpc_url", "token_mint", "reward_mint", "pool_id")
            if not getattr(self, name)
        ]
        if require_signer and not self.has_signer:
            missing.append("keypair_path or keypair_secret")
        if missing:
            raise ConfigurationError(f"missing required config: {', '.join(missing)}")

        problems: list[str] = []
        if self.minimum_holding_threshold < 0:
            problems.append("minimum_holding_threshold must be >= 0")
        if self.minimum_payout_threshold < 0:
            problems.append("minimum_payout_threshold must be >= 0")
        if not 0 <= self.slippage_tolerance_bps < 10_000:
            problems.append("slippage_tolerance_bps must be in [0, 10000)")
        if not 0 < self.reward_share_pct <= 100:
            problems.append("reward_share_pct must be in (0, 100]")
        if self.liquidity_multiple < 1:
            problems.append("liquidity_multiple must be >= 1")
        for name in ("token_decimals", "reward_decimals"):
            if not 0 <= getattr(self, name) <= 18:
                problems.append(f"{name} must be in [0, 18]")
        if self.max_transaction_size_bytes <= 0:
            problems.append("max_transaction_size_bytes must be > 0")
        if self.max_retries < 1:
            problems.append("max_retries must be >= 1")
        if self.max_expiry_retries < 0:
            problems.append("max_expiry_retries must be >= 0")
        if self.initial_backoff_ms <= 0:
            problems.append("initial_backoff_ms must be > 0")
        if self.max_backoff_ms < self.initial_backoff_ms:
            problems.append("max_backoff_ms must be >= initial_backoff_ms")
        if self.inter_batch_spacing_ms < 0:
            problems.append("inter_batch_spacing_ms must be >= 0")
        if self.concurrency_limit < 1:
            problems.append("concurrency_limit must be >= 1")
        if self.rpc_timeout <= 0 or self.confirm_timeout <= 0:
            problems.append("timeouts must be > 0")
        if problems:
            raise ConfigurationError("; ".join(problems))
