"""REST client for the exchange that prices and executes conversions."""

from __future__ import annotations

import http.client
import json
import logging
import random
import socket
import ssl
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from market_client.auth import ApiCredentials, AuthSigner
from market_client.models import MarketTicker, PoolQuote, PoolSwapResult
from utils.rate_limiter import RateLimiter

LOGGER = logging.getLogger("staking_monitor.rest")
RETRYABLE_STATUS = frozenset({500, 502, 503, 504})


@dataclass
class RestRequest:
    method: str
    path: str
    params: Mapping[str, Any] | None = None
    body: Mapping[str, Any] | None = None


class RestError(Exception):
    """Base exception for REST client errors."""


class RateLimitError(RestError):
    """Raised when the API indicates that the rate limit has been exceeded."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class TransientApiError(RestError):
    """Raised for transient REST errors that may succeed on retry."""


class RestClient:
    """Minimal REST client with retry and rate-limit handling."""

    def __init__(
        self,
        base_url: str,
        credentials: ApiCredentials | None = None,
        signer: AuthSigner | None = None,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
        sign_absolute_url: bool = True,
        rate_limiter: RateLimiter | None = None,
        verify_ssl: bool = True,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self.signer = signer or AuthSigner()
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.sign_absolute_url = sign_absolute_url
        self._rate_limiter = rate_limiter
        if verify_ssl:
            self._ssl_context = ssl.create_default_context()
        else:
            self._ssl_context = ssl._create_unverified_context()
            LOGGER.warning(
                "SSL certificate verification is DISABLED. "
                "This should NEVER be used in production environments."
            )

    def build_url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def send(self, request: RestRequest) -> dict[str, Any]:
        """Send ``request``, retrying rate limits and transient failures."""
        if self._rate_limiter is not None:
            self._rate_limiter.acquire()

        for attempt in range(1, self.max_retries + 2):
            try:
                return self._send_once(request)
            except (RateLimitError, TransientApiError) as exc:
                if attempt > self.max_retries:
                    raise
                delay = self._retry_delay(exc, attempt)
                LOGGER.debug(
                    "Retrying %s %s in %.2fs (attempt %s): %s",
                    request.method,
                    request.path,
                    delay,
                    attempt,
                    exc,
                )
                time.sleep(delay)
        raise AssertionError("unreachable")

    def _send_once(self, request: RestRequest) -> dict[str, Any]:
        http_request = self._prepare(request)
        raw = self._open(http_request)
        if not raw:
            return {}
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise RestError(f"Invalid JSON response from {request.path}") from exc

    def _prepare(self, request: RestRequest) -> Request:
        method = request.method.upper()
        endpoint = self.build_url(request.path)
        is_get = method == "GET"
        params = dict(request.params or {}) if is_get else {}
        body = dict(request.body or {}) if not is_get else {}

        headers = {"Accept": "application/json"}
        url = f"{endpoint}?{self.signer.serialize_query(params)}" if params else endpoint
        data = None
        if body:
            data = self.signer.serialize_body(body).encode("utf8")
            headers["Content-Type"] = "application/json"

        if self.credentials is not None:
            signed = self.signer.build_rest_headers(
                credentials=self.credentials,
                method=method,
                url=endpoint if self.sign_absolute_url else request.path,
                params=params or None,
                body=body or None,
            )
            headers.update(signed.headers)
        return Request(url=url, method=method, headers=headers, data=data)

    def _open(self, http_request: Request) -> str:
        try:
            with urlopen(
                http_request, timeout=self.timeout, context=self._ssl_context
            ) as response:
                return response.read().decode("utf8")
        except HTTPError as exc:
            raise self._error_from_status(exc) from exc
        except (URLError, socket.timeout, http.client.RemoteDisconnected) as exc:
            raise TransientApiError(
                f"Network error while contacting {http_request.full_url}"
            ) from exc

    def _error_from_status(self, exc: HTTPError) -> RestError:
        if exc.code == 429:
            return RateLimitError(
                "Rate limit exceeded",
                retry_after=self._parse_retry_after(exc.headers.get("Retry-After")),
            )
        if exc.code in RETRYABLE_STATUS:
            return TransientApiError(f"Transient HTTP error {exc.code}")
        detail = exc.read().decode("utf8") if exc.fp else ""
        if exc.code == 401:
            return RestError(
                "HTTP error 401: Not Authorized. Check the router API key/secret "
                "and that the key may execute pool swaps."
            )
        return RestError(f"HTTP error {exc.code}: {detail}" if detail else f"HTTP error {exc.code}")

    def _retry_delay(self, exc: RestError, attempt: int) -> float:
        if isinstance(exc, RateLimitError) and exc.retry_after:
            return exc.retry_after
        base = self.backoff_factor * (2 ** (attempt - 1))
        return base + random.uniform(0, base)

    @staticmethod
    def _parse_retry_after(header_value: str | None) -> float | None:
        if not header_value:
            return None
        try:
            return float(header_value)
        except ValueError:
            return None

    @staticmethod
    def _unwrap(response: dict[str, Any]) -> Any:
        if isinstance(response, dict):
            for key in ("data", "result"):
                if key in response:
                    return response[key]
        return response

    def get_market_data(self, symbol: str) -> MarketTicker:
        response = self.send(RestRequest(method="GET", path=f"/ticker/{symbol}"))
        payload = self._unwrap(response) or {}
        return MarketTicker(
            symbol=str(payload.get("symbol", symbol)),
            last_price=_resolve_last_price(payload),
            bid=payload.get("bid"),
            ask=payload.get("ask"),
            raw_payload=payload,
        )

    def get_pool_quote(self, symbol: str, side: str, amount: str) -> PoolQuote:
        """Quote a pool swap without executing it."""
        body = {"symbol": symbol, "side": side, "amount": amount}
        response = self.send(RestRequest(method="POST", path="/pool/quote", body=body))
        payload = self._unwrap(response) or {}
        if not isinstance(payload, dict):
            raise RestError(f"Unexpected pool quote payload for {symbol}: {payload}")
        return PoolQuote(
            symbol=symbol,
            amount_in=payload.get("amountIn", payload.get("amount_in", amount)),
            amount_out=payload.get("amountOut", payload.get("amount_out")),
            price=payload.get("price", payload.get("effectivePrice")),
            fee=payload.get("fee", payload.get("feeAmount")),
            raw_payload=payload,
        )

    def execute_pool_swap(
        self, symbol: str, side: str, amount: str, min_received: str | None = None
    ) -> PoolSwapResult:
        """Execute a pool swap; ``min_received`` bounds slippage."""
        body: dict[str, Any] = {"symbol": symbol, "side": side, "amount": amount}
        if min_received is not None:
            body["minReceived"] = min_received
        response = self.send(RestRequest(method="POST", path="/pool/swap", body=body))
        payload = self._unwrap(response) or {}
        if not isinstance(payload, dict):
            raise RestError(f"Unexpected pool swap payload for {symbol}: {payload}")
        swap_id = payload.get("id", payload.get("swapId"))
        return PoolSwapResult(
            swap_id=str(swap_id) if swap_id is not None else None,
            symbol=symbol,
            amount_in=payload.get("amountIn", payload.get("amount_in", amount)),
            amount_out=payload.get("amountOut", payload.get("amount_out")),
            status=payload.get("status"),
            raw_payload=payload,
        )


def _resolve_last_price(payload: Mapping[str, Any]) -> str | None:
    for key in ("last_price", "last", "lastPrice", "price"):
        value = payload.get(key)
        if value not in (None, ""):
            return str(value)
    bid = _parse_decimal(payload.get("bid"))
    ask = _parse_decimal(payload.get("ask"))
    if bid is not None and ask is not None:
        return str((bid + ask) / Decimal("2"))
    return None


def _parse_decimal(value: Any) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
