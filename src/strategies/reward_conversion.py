"""Reward conversion helpers: accrual math, price scaling and thresholds."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal

DEFAULT_PRICE_DECIMALS = 8
DEFAULT_BASE_DECIMALS = 18
DEFAULT_STABLE_DECIMALS = 18


@dataclass(frozen=True)
class AccrualResult:
    delta: int
    contribution: int
    new_snapshot: int


def _to_decimal(value: Decimal | int | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_fixed(value: Decimal | int | str, decimals: int) -> int:
    """Scale a human-readable amount into integer units, truncating dust."""
    if decimals < 0:
        raise ValueError("decimals must be non-negative")
    scaled = _to_decimal(value).scaleb(decimals)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def from_fixed(value: int, decimals: int) -> Decimal:
    """Inverse of :func:`to_fixed`."""
    if decimals < 0:
        raise ValueError("decimals must be non-negative")
    return Decimal(value).scaleb(-decimals)


def format_fixed(value: int, decimals: int) -> str:
    """Plain decimal string without exponent or trailing zeros."""
    text = format(from_fixed(value, decimals), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def rescale(value: int, from_decimals: int, to_decimals: int) -> int:
    """Move an integer between two fixed-point scales, truncating."""
    if from_decimals == to_decimals:
        return value
    if from_decimals < to_decimals:
        return value * 10 ** (to_decimals - from_decimals)
    return value // 10 ** (from_decimals - to_decimals)


def calculate_accrual(
    *,
    current_balance: int,
    last_observed_balance: int,
    conversion_percentage: int,
) -> AccrualResult:
    """Compute the pending contribution for one accrual pass.

    Negative deltas contribute nothing but the snapshot still moves to the
    current balance.
    """
    if not 0 <= conversion_percentage <= 100:
        raise ValueError("conversion_percentage must be between 0 and 100")
    delta = current_balance - last_observed_balance
    if delta <= 0:
        return AccrualResult(delta=delta, contribution=0, new_snapshot=current_balance)
    contribution = delta * conversion_percentage // 100
    return AccrualResult(
        delta=delta, contribution=contribution, new_snapshot=current_balance
    )


def is_price_triggered(price: int, target_price: int | None) -> bool:
    """Strictly-greater-than threshold; an unset target never triggers."""
    if target_price is None:
        return False
    return price > target_price


def describe() -> str:
    return "Reward accrual and price-triggered stable conversion helpers."
