"""Wire models for the exchange REST API.

Pydantic-based models; amounts stay as strings to keep full decimal precision.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _validate_decimal_string(v: Any, *, allow_none: bool) -> str | None:
    if v is None or v == "":
        if allow_none:
            return None
        raise ValueError("Amount is required")
    try:
        Decimal(str(v))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValueError(f"Invalid amount: {v}") from e
    return str(v)


class MarketTicker(BaseModel):
    """Market ticker data model."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    symbol: str
    last_price: str | None = None
    bid: str | None = None
    ask: str | None = None
    raw_payload: Mapping[str, Any] = Field(default_factory=dict)

    @field_validator("last_price", "bid", "ask", mode="before")
    @classmethod
    def validate_price_fields(cls, v: Any) -> str | None:
        return _validate_decimal_string(v, allow_none=True)


class PoolQuote(BaseModel):
    """Read-only swap quote for a liquidity pool."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    symbol: str
    amount_in: str
    amount_out: str
    price: str | None = None
    fee: str | None = None
    raw_payload: Mapping[str, Any] = Field(default_factory=dict)

    @field_validator("amount_in", "amount_out", mode="before")
    @classmethod
    def validate_amounts(cls, v: Any) -> str:
        return _validate_decimal_string(v, allow_none=False)

    @field_validator("price", "fee", mode="before")
    @classmethod
    def validate_optional_amounts(cls, v: Any) -> str | None:
        return _validate_decimal_string(v, allow_none=True)


class PoolSwapResult(BaseModel):
    """Executed liquidity pool swap."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    swap_id: str | None = None
    symbol: str
    amount_in: str
    amount_out: str
    status: str | None = None
    raw_payload: Mapping[str, Any] = Field(default_factory=dict)

    @field_validator("amount_in", "amount_out", mode="before")
    @classmethod
    def validate_amounts(cls, v: Any) -> str:
        return _validate_decimal_string(v, allow_none=False)

    @property
    def is_failed(self) -> bool:
        return (self.status or "").lower() in {"failed", "rejected", "cancelled", "canceled"}
