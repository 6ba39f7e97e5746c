"""Decimal <-> integer base-unit conversions. Never routed through float."""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal


def smallest_unit(decimals: int) -> Decimal:
    """1 base unit expressed in whole tokens, e.g. 0.00000001 for 8 decimals."""
    return Decimal(1).scaleb(-decimals)


def truncate(amount: Decimal, decimals: int) -> Decimal:
    """Floor an amount to the asset's base-unit granularity. Never rounds up."""
    return amount.quantize(smallest_unit(decimals), rounding=ROUND_DOWN)


def to_base_units(amount: Decimal, decimals: int) -> int:
    return int(truncate(amount, decimals).scaleb(decimals))


def from_base_units(raw: int, decimals: int) -> Decimal:
    return Decimal(raw).scaleb(-decimals)
