"""Conversion and distribution plan models."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from holder_rewards.models.holders import Holder


# ---------------------------------------------------------------------------
# Asset conversion
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PoolSnapshot:
    """Liquidity pool state as loaded from the pool backend. Advisory only."""

    pool_id: str
    source_mint: str
    reward_mint: str
    source_reserve: Decimal
    reward_reserve: Decimal
    source_decimals: int
    reward_decimals: int
    fee_rate: Decimal = Decimal(0)
    loaded_at: str = ""  # ISO 8601


@dataclass(frozen=True)
class QuoteResult:
    """Estimated output for a swap, computed off a live pool snapshot."""

    input_amount: Decimal
    estimated_output: Decimal
    effective_price: Decimal  # reward units per source unit


@dataclass(frozen=True)
class ConversionResult:
    """A completed swap. ``output_amount`` is the realized balance delta, not the quote."""

    input_amount: Decimal
    output_amount: Decimal
    effective_price: Decimal
    quoted_output: Decimal | None = None
    signature: str | None = None


# ---------------------------------------------------------------------------
# Distribution plan
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlanEntry:
    holder: Holder
    raw_share: Decimal  # exact pro-rata share before truncation
    payable_amount: Decimal  # floor-truncated to reward decimals


@dataclass(frozen=True)
class DistributionPlan:
    """Payout plan for one cycle. Built once, consumed read-only by the batch builder."""

    total_reward_amount: Decimal
    reward_decimals: int
    entries: tuple[PlanEntry, ...] = field(default_factory=tuple)
    skipped_below_min_holding: int = 0
    skipped_below_min_payout: int = 0

    @property
    def total_payable(self) -> Decimal:
        return sum((e.payable_amount for e in self.entries), Decimal(0))

    @property
    def remainder(self) -> Decimal:
        """Reward left undistributed by truncation and the payout threshold."""
        if self.total_reward_amount <= 0:
            return Decimal(0)
        return self.total_reward_amount - self.total_payable

    @property
    def is_empty(self) -> bool:
        return not self.entries
