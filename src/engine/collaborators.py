"""Interfaces for the external systems the monitor depends on."""

from __future__ import annotations

from typing import Protocol


class ExternalFailure(Exception):
    """Raised when a price feed, router or balance source cannot serve a call."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source


class PriceOracle(Protocol):
    def get_price(self) -> int:
        """Return the current base asset price in the oracle's fixed-point scale."""


class ExchangeRouter(Protocol):
    def convert(self, amount_in: int) -> int:
        """Convert exactly ``amount_in`` base units and return stable units received."""


class BalanceSource(Protocol):
    def get_balance(self, user: str) -> int:
        """Return the monitored balance for a user in base units."""
