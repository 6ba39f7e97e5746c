"""Holder snapshot and eligibility models."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class Holder:
    """An owner wallet and its point-in-time balance of the distributed token."""

    address: str
    balance: Decimal  # whole tokens, captured at cycle start


@dataclass(frozen=True)
class EligibilityResult:
    """Holders partitioned by the minimum holding threshold.

    ``disqualified_count`` includes malformed holders (``anomalies``), so
    ``disqualified_count + len(qualified)`` always equals the input size.
    """

    qualified: tuple[Holder, ...] = field(default_factory=tuple)
    disqualified_count: int = 0
    anomalies: int = 0

    @property
    def total_holders(self) -> int:
        return len(self.qualified) + self.disqualified_count
