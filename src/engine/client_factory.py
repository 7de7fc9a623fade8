"""
Builds every external collaborator of the staking monitor from one config dict.

All entry points (CLI, runner, bots) go through these builders so signing,
timeouts and decimals are configured the same way everywhere.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from engine.balance_source import Web3BalanceSource
from engine.collaborators import PriceOracle
from engine.exchange_router import PoolSwapRouter
from engine.ledger import UserLedger
from engine.monitor import StakingMonitor
from engine.price_oracle import ChainlinkPriceOracle, RestTickerPriceOracle
from market_client.auth import AuthSigner
from market_client.chain import ChainReader, normalize_address
from market_client.constants import (
    DEFAULT_ETH_USD_FEED,
    DEFAULT_RPC_URL,
    default_rest_base_url,
)
from market_client.rest import RestClient
from strategies.reward_conversion import (
    DEFAULT_BASE_DECIMALS,
    DEFAULT_PRICE_DECIMALS,
    DEFAULT_STABLE_DECIMALS,
)
from utils.credentials import DEFAULT_SERVICE_NAME, load_api_credentials
from utils.rate_limiter import RateLimitConfig, RateLimiter


def build_rest_client(config: dict[str, Any], *, sign_requests: bool | None = None) -> RestClient:
    """
    Build the REST client from config.

    Args:
        config: Configuration dict containing:
            - sign_requests: bool (default: True) - Enable signing
            - base_url: str (default: exchange API v2 URL)
            - nonce_multiplier: float (default: 1e4)
            - sign_absolute_url: bool (default: True)
            - rest_timeout_sec / rest_retries / rest_backoff_factor
            - rate_limit_per_sec: int (optional) - Client-side request cap
        sign_requests: Overrides ``config["sign_requests"]`` when given.
    """
    signing_enabled = (
        config.get("sign_requests", True) if sign_requests is None else sign_requests
    )
    creds = (
        load_api_credentials(
            config.get("credential_service", DEFAULT_SERVICE_NAME), config
        )
        if signing_enabled
        else None
    )
    signer = AuthSigner(
        nonce_multiplier=config.get("nonce_multiplier", 1e4),
        sort_params=config.get("sort_params", False),
        sort_body=config.get("sort_body", False),
    )
    rate_limiter = None
    if config.get("rate_limit_per_sec"):
        rate_limiter = RateLimiter(
            RateLimitConfig(max_requests=int(config["rate_limit_per_sec"]), time_window=1.0)
        )
    return RestClient(
        base_url=config.get("base_url", default_rest_base_url()),
        credentials=creds,
        signer=signer,
        timeout=float(config.get("rest_timeout_sec", 10.0)),
        max_retries=int(config.get("rest_retries", 3)),
        backoff_factor=float(config.get("rest_backoff_factor", 0.5)),
        sign_absolute_url=config.get("sign_absolute_url", True),
        rate_limiter=rate_limiter,
    )


def build_chain_reader(config: dict[str, Any]) -> ChainReader:
    return ChainReader(
        config.get("rpc_url", DEFAULT_RPC_URL),
        timeout=float(config.get("rpc_timeout_sec", 10.0)),
    )


def build_price_oracle(
    config: dict[str, Any],
    *,
    chain: ChainReader | None = None,
    rest_client: RestClient | None = None,
) -> PriceOracle:
    feed = config.get("price_feed", {"source": "chainlink"})
    decimals = int(config.get("price_decimals", DEFAULT_PRICE_DECIMALS))
    if feed["source"] == "rest":
        return RestTickerPriceOracle(
            rest_client or build_rest_client(config, sign_requests=False),
            feed["symbol"],
            price_source=feed.get("price_source", "mid"),
            decimals=decimals,
        )
    max_age = feed.get("max_age_sec")
    return ChainlinkPriceOracle(
        chain or build_chain_reader(config),
        feed.get("address", DEFAULT_ETH_USD_FEED),
        decimals=decimals,
        max_age_sec=float(max_age) if max_age is not None else None,
    )


def build_router(
    config: dict[str, Any], *, rest_client: RestClient | None = None
) -> PoolSwapRouter:
    router = config["router"]
    return PoolSwapRouter(
        rest_client or build_rest_client(config),
        router["symbol"],
        side=router.get("side", "sell"),
        base_decimals=int(config.get("base_decimals", DEFAULT_BASE_DECIMALS)),
        stable_decimals=int(config.get("stable_decimals", DEFAULT_STABLE_DECIMALS)),
        max_slippage_pct=Decimal(str(router.get("max_slippage_pct", "0.01"))),
    )


def build_balance_source(
    config: dict[str, Any], *, chain: ChainReader | None = None
) -> Web3BalanceSource:
    return Web3BalanceSource(chain or build_chain_reader(config))


def build_monitor(
    config: dict[str, Any],
    ledger: UserLedger,
    *,
    sign_requests: bool | None = None,
) -> StakingMonitor:
    """
    Wire a monitor around ``ledger``; one chain reader and REST client are shared.

    Requests are signed only in live mode unless ``sign_requests`` says otherwise,
    so monitor and dry-run setups need no credentials.
    """
    if sign_requests is None:
        sign_requests = config.get("mode", "monitor") == "live" and config.get(
            "sign_requests", True
        )
    chain = build_chain_reader(config)
    rest_client = build_rest_client(config, sign_requests=sign_requests)
    return StakingMonitor(
        ledger,
        oracle=build_price_oracle(config, chain=chain, rest_client=rest_client),
        router=build_router(config, rest_client=rest_client),
        balance_source=build_balance_source(config, chain=chain),
        normalize_user=normalize_address,
    )
