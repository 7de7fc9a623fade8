"""Exchange router adapter executing base-to-stable conversions on a pool."""

from __future__ import annotations

import logging
from decimal import Decimal

from engine.collaborators import ExternalFailure
from market_client.rest import RestClient, RestError
from strategies.reward_conversion import (
    DEFAULT_BASE_DECIMALS,
    DEFAULT_STABLE_DECIMALS,
    format_fixed,
    to_fixed,
)

LOGGER = logging.getLogger("staking_monitor.router")


class PoolSwapRouter:
    """Sell base units into a liquidity pool with a slippage floor."""

    def __init__(
        self,
        rest_client: RestClient,
        symbol: str,
        *,
        side: str = "sell",
        base_decimals: int = DEFAULT_BASE_DECIMALS,
        stable_decimals: int = DEFAULT_STABLE_DECIMALS,
        max_slippage_pct: Decimal = Decimal("0.01"),
    ) -> None:
        if not (Decimal("0") <= max_slippage_pct < Decimal("1")):
            raise ValueError("max_slippage_pct must be between 0 and 1")
        self.rest_client = rest_client
        self.symbol = symbol
        self.side = side
        self.base_decimals = base_decimals
        self.stable_decimals = stable_decimals
        self.max_slippage_pct = max_slippage_pct

    def quote(self, amount_in: int) -> int:
        """Expected stable units for ``amount_in`` base units."""
        amount = format_fixed(amount_in, self.base_decimals)
        try:
            quote = self.rest_client.get_pool_quote(self.symbol, self.side, amount)
        except (RestError, ValueError) as exc:
            raise ExternalFailure("router", f"quote failed: {exc}") from exc
        return to_fixed(quote.amount_out, self.stable_decimals)

    def convert(self, amount_in: int) -> int:
        if amount_in <= 0:
            raise ValueError("amount_in must be positive")
        expected = self.quote(amount_in)
        if expected <= 0:
            raise ExternalFailure("router", f"no liquidity for {amount_in} on {self.symbol}")
        min_received = expected * (Decimal("1") - self.max_slippage_pct)
        min_received_units = int(min_received)
        amount = format_fixed(amount_in, self.base_decimals)
        try:
            result = self.rest_client.execute_pool_swap(
                self.symbol,
                self.side,
                amount,
                min_received=format_fixed(min_received_units, self.stable_decimals),
            )
        except (RestError, ValueError) as exc:
            raise ExternalFailure("router", f"swap failed: {exc}") from exc
        if result.is_failed:
            raise ExternalFailure(
                "router", f"swap {result.swap_id} ended with status {result.status}"
            )
        amount_out = to_fixed(result.amount_out, self.stable_decimals)
        if amount_out < min_received_units:
            raise ExternalFailure(
                "router",
                f"swap {result.swap_id} returned {amount_out} below floor {min_received_units}",
            )
        LOGGER.info(
            "Pool swap %s on %s: %s in, %s out.",
            result.swap_id,
            self.symbol,
            amount,
            result.amount_out,
        )
        return amount_out
