"""Eligibility filter - partitions a holder snapshot by the minimum holding threshold."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable

from holder_rewards.models.holders import EligibilityResult, Holder

log = logging.getLogger(__name__)


class EligibilityFilter:
    """Applies the minimum holding threshold to a point-in-time holder snapshot.

    Checks, per holder:
    1. Balance is a finite, non-negative Decimal (otherwise: anomaly, excluded)
    2. Balance >= minimum holding threshold

    Pure and O(n). A malformed holder never aborts the whole snapshot.
    """

    def __init__(self, minimum_holding_threshold: Decimal = Decimal(0)) -> None:
        self._threshold = minimum_holding_threshold

    @property
    def threshold(self) -> Decimal:
        return self._threshold

    def apply(self, holders: Iterable[Holder]) -> EligibilityResult:
        qualified: list[Holder] = []
        disqualified = 0
        anomalies = 0

        for holder in holders:
            if not _is_well_formed(holder):
                log.warning(
                    "Malformed holder %s (balance=%r), excluding",
                    str(holder.address)[:8],
                    holder.balance,
                )
                anomalies += 1
                disqualified += 1
                continue
            if holder.balance >= self._threshold:
                qualified.append(holder)
            else:
                disqualified += 1

        log.info(
            "Eligibility: %d qualified, %d disqualified (threshold %s, %d anomalies)",
            len(qualified), disqualified, self._threshold, anomalies,
        )
        return EligibilityResult(
            qualified=tuple(qualified),
            disqualified_count=disqualified,
            anomalies=anomalies,
        )


def _is_well_formed(holder: Holder) -> bool:
    balance = holder.balance
    if not isinstance(balance, Decimal):
        return False
    return balance.is_finite() and balance >= 0
