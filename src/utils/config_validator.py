"""Configuration validation utilities for the staking monitor."""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any

MODES = {"live", "dry-run", "monitor"}
PRICE_FEED_SOURCES = {"chainlink", "rest"}
TICKER_PRICE_SOURCES = {"mid", "last", "bid", "ask"}
_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


class ConfigValidationError(ValueError):
    """Raised when configuration validation fails."""


def _as_decimal(config: dict[str, Any], field: str) -> Decimal:
    value = config[field]
    if isinstance(value, bool):
        raise ConfigValidationError(f"{field} must be a valid number, got: {value}")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ConfigValidationError(
            f"{field} must be a valid number, got: {value}"
        ) from exc


def validate_api_credentials(
    config: dict[str, Any], *, allow_missing: bool = False
) -> None:
    """Validate API credentials when present; both or neither must be given."""
    has_api_key = "api_key" in config
    has_api_secret = "api_secret" in config
    if not has_api_key and not has_api_secret:
        if allow_missing:
            return
        raise ConfigValidationError("Missing required field: api_key")
    for field, present in (("api_key", has_api_key), ("api_secret", has_api_secret)):
        if not present:
            raise ConfigValidationError(f"Missing required field: {field}")
        value = config[field]
        if not isinstance(value, str) or not value.strip():
            raise ConfigValidationError(f"{field} must be a non-empty string")


def validate_symbol(config: dict[str, Any], field: str = "symbol") -> None:
    """Validate a trading symbol such as ETH/DAI, ETH-DAI or ETH_DAI."""
    if field not in config:
        raise ConfigValidationError(f"Missing required field: {field}")
    symbol = config[field]
    if not isinstance(symbol, str) or not symbol.strip():
        raise ConfigValidationError(f"{field} must be a non-empty string")
    if not re.match(r"^[A-Z0-9]+[/_-][A-Z0-9]+$", symbol, re.IGNORECASE):
        raise ConfigValidationError(
            f"{field} '{symbol}' does not match expected format (e.g., ETH/DAI, "
            "ETH-DAI, or ETH_DAI)"
        )


def validate_address(config: dict[str, Any], field: str) -> None:
    """Validate a 0x-prefixed 20-byte hex address."""
    if field not in config:
        raise ConfigValidationError(f"Missing required field: {field}")
    value = config[field]
    if not isinstance(value, str) or not _ADDRESS_PATTERN.match(value):
        raise ConfigValidationError(f"{field} must be a 0x-prefixed address, got: {value}")


def validate_positive_decimal(
    config: dict[str, Any], field: str, *, required: bool = True
) -> None:
    """Validate that a field is a positive decimal value."""
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return
    decimal_value = _as_decimal(config, field)
    if decimal_value <= 0:
        raise ConfigValidationError(f"{field} must be positive, got: {decimal_value}")


def validate_ratio(config: dict[str, Any], field: str, *, required: bool = True) -> None:
    """Validate that a field lies in [0, 1)."""
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return
    decimal_value = _as_decimal(config, field)
    if not (Decimal("0") <= decimal_value < Decimal("1")):
        raise ConfigValidationError(f"{field} must be between 0 and 1, got: {decimal_value}")


def validate_non_negative_integer(
    config: dict[str, Any], field: str, *, required: bool = True, maximum: int | None = None
) -> None:
    """Validate that a field is an integer >= 0 (and <= maximum when given)."""
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return
    value = config[field]
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigValidationError(
            f"{field} must be an integer, got: {type(value).__name__}"
        )
    if value < 0:
        raise ConfigValidationError(f"{field} must be >= 0, got: {value}")
    if maximum is not None and value > maximum:
        raise ConfigValidationError(f"{field} must be <= {maximum}, got: {value}")


def validate_choice(
    config: dict[str, Any], field: str, choices: set[str], *, required: bool = True
) -> None:
    """Validate that a field is one of the allowed choices."""
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return
    value = config[field]
    if not isinstance(value, str):
        raise ConfigValidationError(
            f"{field} must be a string, got: {type(value).__name__}"
        )
    if value not in choices:
        choices_str = ", ".join(sorted(choices))
        raise ConfigValidationError(
            f"{field} must be one of [{choices_str}], got: {value}"
        )


def validate_url(config: dict[str, Any], field: str = "base_url") -> None:
    """Validate an optional http(s) URL."""
    if field not in config:
        return
    url = config[field]
    if not isinstance(url, str) or not url.strip():
        raise ConfigValidationError(f"{field} must be a non-empty string")
    if not re.match(r"^https?://", url, re.IGNORECASE):
        raise ConfigValidationError(
            f"{field} must start with http:// or https://, got: {url}"
        )


def _require_section(config: dict[str, Any], name: str) -> dict[str, Any]:
    section = config.get(name)
    if not isinstance(section, dict):
        raise ConfigValidationError(f"{name} must be a mapping")
    return section


def validate_price_feed_config(section: dict[str, Any]) -> None:
    validate_choice(section, "source", PRICE_FEED_SOURCES, required=True)
    if section["source"] == "chainlink":
        validate_address(section, "address")
        validate_positive_decimal(section, "max_age_sec", required=False)
    else:
        validate_symbol(section)
        validate_choice(section, "price_source", TICKER_PRICE_SOURCES, required=False)


def validate_router_config(section: dict[str, Any]) -> None:
    validate_symbol(section)
    validate_choice(section, "side", {"buy", "sell"}, required=False)
    validate_ratio(section, "max_slippage_pct", required=False)


def validate_monitor_config(config: dict[str, Any]) -> None:
    """Validate the staking monitor configuration."""
    validate_api_credentials(config, allow_missing=True)
    validate_url(config)
    validate_url(config, "rpc_url")
    validate_choice(config, "mode", MODES, required=False)

    for field in ("price_decimals", "base_decimals", "stable_decimals"):
        validate_non_negative_integer(config, field, required=False, maximum=36)

    for field in (
        "poll_interval_sec",
        "accrual_interval_sec",
        "rest_timeout_sec",
        "rpc_timeout_sec",
        "rest_backoff_factor",
        "rate_limit_per_sec",
    ):
        validate_positive_decimal(config, field, required=False)
    validate_non_negative_integer(config, "rest_retries", required=False)

    if "price_feed" in config:
        validate_price_feed_config(_require_section(config, "price_feed"))
    validate_router_config(_require_section(config, "router"))


def validate_config(config: dict[str, Any]) -> None:
    """
    Validate a configuration mapping.

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    if not isinstance(config, dict):
        raise ConfigValidationError("Configuration must be a dictionary")
    validate_monitor_config(config)
