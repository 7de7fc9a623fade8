"""Price oracle adapters producing fixed-point integer prices."""

from __future__ import annotations

import time
from decimal import Decimal
from typing import Callable

from engine.collaborators import ExternalFailure
from market_client.chain import ChainReader
from market_client.rest import RestClient, RestError
from strategies.reward_conversion import DEFAULT_PRICE_DECIMALS, rescale, to_fixed

PRICE_SOURCES = {"mid", "last", "bid", "ask"}


class RestTickerPriceOracle:
    """Exchange ticker price scaled to ``decimals`` places."""

    def __init__(
        self,
        rest_client: RestClient,
        symbol: str,
        *,
        price_source: str = "mid",
        decimals: int = DEFAULT_PRICE_DECIMALS,
    ) -> None:
        if price_source not in PRICE_SOURCES:
            raise ValueError(f"Unsupported price source: {price_source}")
        self.rest_client = rest_client
        self.symbol = symbol
        self.price_source = price_source
        self.decimals = decimals

    def get_price(self) -> int:
        try:
            ticker = self.rest_client.get_market_data(self.symbol)
        except (RestError, ValueError) as exc:
            raise ExternalFailure("oracle", f"ticker read failed: {exc}") from exc

        price: Decimal | None = None
        if self.price_source == "mid" and ticker.bid and ticker.ask:
            price = (Decimal(ticker.bid) + Decimal(ticker.ask)) / Decimal("2")
        elif self.price_source == "bid" and ticker.bid:
            price = Decimal(ticker.bid)
        elif self.price_source == "ask" and ticker.ask:
            price = Decimal(ticker.ask)
        if price is None and ticker.last_price:
            price = Decimal(ticker.last_price)
        if price is None or price <= 0:
            raise ExternalFailure("oracle", f"no usable price for {self.symbol}")
        return to_fixed(price, self.decimals)


class ChainlinkPriceOracle:
    """Chainlink aggregator answer rescaled to ``decimals`` places."""

    def __init__(
        self,
        chain: ChainReader,
        feed_address: str,
        *,
        decimals: int = DEFAULT_PRICE_DECIMALS,
        max_age_sec: float | None = None,
        time_provider: Callable[[], float] | None = None,
    ) -> None:
        self.chain = chain
        self.feed_address = feed_address
        self.decimals = decimals
        self.max_age_sec = max_age_sec
        self._time_provider = time_provider or time.time

    def get_price(self) -> int:
        try:
            round_data = self.chain.latest_round(self.feed_address)
        except Exception as exc:
            raise ExternalFailure("oracle", f"feed read failed: {exc}") from exc
        if round_data.answer <= 0:
            raise ExternalFailure("oracle", f"non-positive answer {round_data.answer}")
        if self.max_age_sec is not None:
            age = self._time_provider() - round_data.updated_at
            if age > self.max_age_sec:
                raise ExternalFailure(
                    "oracle", f"stale round {round_data.round_id} ({age:.0f}s old)"
                )
        return rescale(round_data.answer, round_data.decimals, self.decimals)
