"""Tests for REST client signing, retries and the pool/ticker endpoints."""

from __future__ import annotations

import hashlib
import hmac
import io
import json
from typing import Any, Literal
from unittest.mock import patch
from urllib.error import HTTPError, URLError

import pytest

from market_client.auth import ApiCredentials, AuthSigner
from market_client.rest import (
    RateLimitError,
    RestClient,
    RestError,
    RestRequest,
    TransientApiError,
)


class FakeResponse:
    def __init__(self, payload: Any) -> None:
        self._payload = payload

    def read(self) -> bytes:
        if isinstance(self._payload, bytes):
            return self._payload
        return json.dumps(self._payload).encode("utf8")

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, exc_type, exc, tb) -> Literal[False]:
        return False


def _expected_signature(message: str, secret: str) -> str:
    return hmac.new(
        secret.encode("utf8"), message.encode("utf8"), hashlib.sha256
    ).hexdigest()


def _signed_client(now: float = 1700000000.0) -> tuple[RestClient, ApiCredentials]:
    credentials = ApiCredentials(api_key="test-key", api_secret="test-secret")
    signer = AuthSigner(time_provider=lambda: now)
    client = RestClient(
        base_url="https://api.example", credentials=credentials, signer=signer
    )
    return client, credentials


def _http_error(code: int, body: bytes = b"", headers: dict | None = None) -> HTTPError:
    return HTTPError(
        "https://api.example/x", code, "error", headers or {}, io.BytesIO(body)
    )


def test_get_ticker_is_signed_over_the_absolute_url() -> None:
    client, credentials = _signed_client()
    captured: dict[str, Any] = {}

    def fake_urlopen(request, timeout=10.0, context=None):
        captured["request"] = request
        return FakeResponse({"symbol": "ETH/USDT", "lastPrice": "3150.42", "bid": "3150", "ask": "3151"})

    with patch("market_client.rest.urlopen", side_effect=fake_urlopen):
        ticker = client.get_market_data("ETH_USDT")

    request = captured["request"]
    assert request.full_url == "https://api.example/ticker/ETH_USDT"
    nonce = str(int(1700000000.0 * 1e4))
    message = f"{credentials.api_key}https://api.example/ticker/ETH_USDT{nonce}"
    assert request.headers["X-api-key"] == credentials.api_key
    assert request.headers["X-api-nonce"] == nonce
    assert request.headers["X-api-sign"] == _expected_signature(
        message, credentials.api_secret
    )
    assert ticker.symbol == "ETH/USDT"
    assert ticker.last_price == "3150.42"
    assert ticker.bid == "3150"
    assert ticker.ask == "3151"


def test_ticker_without_last_price_falls_back_to_mid() -> None:
    client = RestClient(base_url="https://api.example")

    with patch(
        "market_client.rest.urlopen",
        return_value=FakeResponse({"data": {"bid": "99", "ask": "101"}}),
    ):
        ticker = client.get_market_data("ETH_USDT")

    assert ticker.last_price == "100"


def test_unsigned_client_sends_no_auth_headers() -> None:
    client = RestClient(base_url="https://api.example/")
    captured: dict[str, Any] = {}

    def fake_urlopen(request, timeout=10.0, context=None):
        captured["request"] = request
        captured["timeout"] = timeout
        return FakeResponse({"ok": True})

    with patch("market_client.rest.urlopen", side_effect=fake_urlopen):
        client.send(RestRequest(method="GET", path="/ticker/ETH_USDT", params={"a": 1}))

    request = captured["request"]
    assert request.full_url == "https://api.example/ticker/ETH_USDT?a=1"
    assert "X-api-key" not in request.headers
    assert captured["timeout"] == 10.0


def test_pool_quote_posts_signed_json_body() -> None:
    client, credentials = _signed_client(1700000100.0)
    captured: dict[str, Any] = {}

    def fake_urlopen(request, timeout=10.0, context=None):
        captured["request"] = request
        return FakeResponse(
            {"data": {"amountIn": "0.8", "amountOut": "2500.1", "price": "3125.125", "fee": "0.5"}}
        )

    with patch("market_client.rest.urlopen", side_effect=fake_urlopen):
        quote = client.get_pool_quote("ETH/USDT", "sell", "0.8")

    request = captured["request"]
    assert request.full_url == "https://api.example/pool/quote"
    assert request.headers["Content-type"] == "application/json"
    body = request.data.decode("utf8")
    assert json.loads(body) == {"symbol": "ETH/USDT", "side": "sell", "amount": "0.8"}

    nonce = str(int(1700000100.0 * 1e4))
    message = f"{credentials.api_key}https://api.example/pool/quote{body}{nonce}"
    assert request.headers["X-api-sign"] == _expected_signature(
        message, credentials.api_secret
    )
    assert quote.amount_out == "2500.1"
    assert quote.fee == "0.5"


def test_pool_swap_sends_min_received() -> None:
    client, _ = _signed_client()
    captured: dict[str, Any] = {}

    def fake_urlopen(request, timeout=10.0, context=None):
        captured["request"] = request
        return FakeResponse(
            {"data": {"swapId": 42, "amountOut": "2490", "status": "completed"}}
        )

    with patch("market_client.rest.urlopen", side_effect=fake_urlopen):
        result = client.execute_pool_swap("ETH/USDT", "sell", "0.8", min_received="2475")

    body = json.loads(captured["request"].data.decode("utf8"))
    assert body["minReceived"] == "2475"
    assert result.swap_id == "42"
    assert result.amount_in == "0.8"
    assert result.amount_out == "2490"
    assert result.is_failed is False


def test_pool_swap_rejects_missing_output() -> None:
    client, _ = _signed_client()

    with patch(
        "market_client.rest.urlopen",
        return_value=FakeResponse({"data": {"status": "failed"}}),
    ):
        with pytest.raises(ValueError):
            client.execute_pool_swap("ETH/USDT", "sell", "0.8")


def test_transient_errors_are_retried_with_backoff() -> None:
    client = RestClient(base_url="https://api.example", max_retries=2)
    responses = [_http_error(503), URLError("reset"), FakeResponse({"ok": True})]

    def fake_urlopen(request, timeout=10.0, context=None):
        outcome = responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    with patch("market_client.rest.urlopen", side_effect=fake_urlopen), patch(
        "market_client.rest.time.sleep"
    ) as sleep, patch("market_client.rest.random.uniform", return_value=0.0):
        response = client.send(RestRequest(method="GET", path="/ping"))

    assert response == {"ok": True}
    assert [call.args[0] for call in sleep.call_args_list] == [0.5, 1.0]


def test_transient_error_raises_after_max_retries() -> None:
    client = RestClient(base_url="https://api.example", max_retries=1)

    with patch(
        "market_client.rest.urlopen", side_effect=_http_error(502)
    ), patch("market_client.rest.time.sleep"), patch(
        "market_client.rest.random.uniform", return_value=0.0
    ):
        with pytest.raises(TransientApiError):
            client.send(RestRequest(method="GET", path="/ping"))


def test_rate_limit_uses_retry_after_header() -> None:
    client = RestClient(base_url="https://api.example", max_retries=1)
    responses = [
        _http_error(429, headers={"Retry-After": "3"}),
        FakeResponse({"ok": True}),
    ]

    def fake_urlopen(request, timeout=10.0, context=None):
        outcome = responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    with patch("market_client.rest.urlopen", side_effect=fake_urlopen), patch(
        "market_client.rest.time.sleep"
    ) as sleep:
        client.send(RestRequest(method="GET", path="/ping"))

    sleep.assert_called_once_with(3.0)


def test_rate_limit_error_surfaces_when_retries_exhausted() -> None:
    client = RestClient(base_url="https://api.example", max_retries=0)

    with patch(
        "market_client.rest.urlopen",
        side_effect=_http_error(429, headers={"Retry-After": "7"}),
    ):
        with pytest.raises(RateLimitError) as excinfo:
            client.send(RestRequest(method="GET", path="/ping"))

    assert excinfo.value.retry_after == 7.0


def test_client_errors_are_not_retried() -> None:
    client = RestClient(base_url="https://api.example")
    calls = []

    def fake_urlopen(request, timeout=10.0, context=None):
        calls.append(request)
        raise _http_error(400, b'{"error": "bad symbol"}')

    with patch("market_client.rest.urlopen", side_effect=fake_urlopen):
        with pytest.raises(RestError) as excinfo:
            client.send(RestRequest(method="GET", path="/ticker/NOPE"))

    assert len(calls) == 1
    assert "400" in str(excinfo.value)


def test_invalid_json_is_a_rest_error() -> None:
    client = RestClient(base_url="https://api.example")

    with patch("market_client.rest.urlopen", return_value=FakeResponse(b"<html>")):
        with pytest.raises(RestError, match="Invalid JSON"):
            client.send(RestRequest(method="GET", path="/ticker/ETH_USDT"))


def test_rate_limiter_is_consulted_before_each_request() -> None:
    class CountingLimiter:
        def __init__(self) -> None:
            self.calls = 0

        def acquire(self, *, blocking: bool = True) -> bool:
            self.calls += 1
            return True

    limiter = CountingLimiter()
    client = RestClient(base_url="https://api.example", rate_limiter=limiter)

    with patch("market_client.rest.urlopen", return_value=FakeResponse({})):
        client.send(RestRequest(method="GET", path="/a"))
        client.send(RestRequest(method="GET", path="/b"))

    assert limiter.calls == 2
