"""Accrual and conversion rules for the staking monitor."""

from .reward_conversion import describe as reward_conversion_describe

__all__ = [
    "reward_conversion_describe",
]
