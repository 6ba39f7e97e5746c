"""Eligibility filter: threshold partitioning and malformed holders."""

from __future__ import annotations

from decimal import Decimal

from holder_rewards.models.holders import Holder
from holder_rewards.policy.eligibility import EligibilityFilter

from tests.factories import make_holder, make_holders


def test_partitions_by_threshold():
    holders = make_holders(1000, 500, 10)
    result = EligibilityFilter(Decimal(50)).apply(holders)

    assert [h.balance for h in result.qualified] == [Decimal(1000), Decimal(500)]
    assert result.disqualified_count == 1
    assert result.total_holders == 3


def test_balance_equal_to_threshold_qualifies():
    result = EligibilityFilter(Decimal(50)).apply(make_holders(50, "49.999999999"))
    assert len(result.qualified) == 1
    assert result.qualified[0].balance == Decimal(50)


def test_every_qualified_holder_meets_threshold():
    threshold = Decimal("123.45")
    balances = [Decimal(i) / 7 for i in range(0, 2000, 13)]
    result = EligibilityFilter(threshold).apply(make_holders(*balances))

    assert all(h.balance >= threshold for h in result.qualified)
    assert result.disqualified_count + len(result.qualified) == len(balances)


def test_preserves_input_order():
    holders = make_holders(5, 300, 200, 1, 400)
    result = EligibilityFilter(Decimal(100)).apply(holders)
    assert [h.address for h in result.qualified] == [
        holders[1].address, holders[2].address, holders[4].address,
    ]


def test_malformed_holders_excluded_not_fatal():
    good = make_holder(100)
    holders = [
        good,
        Holder("negative", Decimal(-5)),
        Holder("nan", Decimal("NaN")),
        Holder("inf", Decimal("Infinity")),
        Holder("float", 12.5),  # type: ignore[arg-type]
    ]
    result = EligibilityFilter(Decimal(0)).apply(holders)

    assert result.qualified == (good,)
    assert result.anomalies == 4
    assert result.disqualified_count == 4
    assert result.total_holders == 5


def test_empty_snapshot():
    result = EligibilityFilter(Decimal(10)).apply([])
    assert result.qualified == ()
    assert result.disqualified_count == 0
