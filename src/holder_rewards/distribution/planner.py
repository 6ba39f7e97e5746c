"""Distribution planner - proportional, dust-aware payout plans."""

from __future__ import annotations

import logging
from decimal import Decimal, localcontext

from holder_rewards.models.distribution import DistributionPlan, PlanEntry
from holder_rewards.models.holders import EligibilityResult
from holder_rewards.units import truncate

log = logging.getLogger(__name__)

# Working precision for share arithmetic.
_PRECISION = 60


class DistributionPlanner:
    """Turns qualified holders and a reward amount into a DistributionPlan.

    share(h) = h.balance * total / sum(qualified balances), floored to the
    reward asset's base unit. Entries keep the input order.
    """

    def __init__(
        self,
        reward_decimals: int,
        minimum_payout_threshold: Decimal = Decimal(0),
    ) -> None:
        self._decimals = reward_decimals
        self._min_payout = minimum_payout_threshold

    def plan(
        self,
        eligibility: EligibilityResult,
        total_reward_amount: Decimal,
    ) -> DistributionPlan:
        skipped_holding = eligibility.disqualified_count
        qualified = eligibility.qualified
        balance_sum = sum((h.balance for h in qualified), Decimal(0))

        if not qualified or balance_sum <= 0 or total_reward_amount <= 0:
            log.info(
                "Empty plan: %d qualified holders, reward %s",
                len(qualified), total_reward_amount,
            )
            return DistributionPlan(
                total_reward_amount=total_reward_amount,
                reward_decimals=self._decimals,
                skipped_below_min_holding=skipped_holding,
            )

        entries: list[PlanEntry] = []
        skipped_payout = 0
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            for holder in qualified:
                raw_share = holder.balance * total_reward_amount / balance_sum
                if raw_share <= 0:
                    continue  # zero share, not dust
                payable = truncate(raw_share, self._decimals)
                if payable <= 0 or payable < self._min_payout:
                    skipped_payout += 1
                    continue
                entries.append(PlanEntry(holder, raw_share, payable))

        plan = DistributionPlan(
            total_reward_amount=total_reward_amount,
            reward_decimals=self._decimals,
            entries=tuple(entries),
            skipped_below_min_holding=skipped_holding,
            skipped_below_min_payout=skipped_payout,
        )
        log.info(
            "Plan: %d entries, %s of %s payable, %d below min payout, remainder %s",
            len(entries), plan.total_payable, total_reward_amount,
            skipped_payout, plan.remainder,
        )
        return plan
