"""Request signing for the exchange REST API used by the conversion router."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping
from urllib.parse import urlencode


@dataclass(frozen=True)
class ApiCredentials:
    api_key: str
    api_secret: str


@dataclass(frozen=True)
class SignedHeaders:
    headers: dict[str, str]
    signature: str
    nonce: int
    data_to_sign: str


class AuthSigner:
    """HMAC-SHA256 signer over ``api_key + url_or_body + nonce``."""

    def __init__(
        self,
        time_provider: Callable[[], float] | None = None,
        *,
        nonce_multiplier: float = 1e4,
        sort_params: bool = False,
        sort_body: bool = False,
    ) -> None:
        self._time_provider = time_provider or time.time
        self._nonce_multiplier = nonce_multiplier
        self._sort_params = sort_params
        self._sort_body = sort_body

    def sign(self, message: str, credentials: ApiCredentials) -> str:
        return hmac.new(
            credentials.api_secret.encode("utf8"),
            message.encode("utf8"),
            hashlib.sha256,
        ).hexdigest()

    def serialize_body(self, body: Mapping[str, Any]) -> str:
        return json.dumps(
            body,
            separators=(",", ":"),
            sort_keys=self._sort_body,
            ensure_ascii=False,
        )

    def serialize_query(self, params: Mapping[str, Any]) -> str:
        query_items = sorted(params.items()) if self._sort_params else params.items()
        return urlencode(list(query_items), doseq=True)

    def generate_nonce(self) -> int:
        return int(self._time_provider() * self._nonce_multiplier)

    def build_rest_headers(
        self,
        credentials: ApiCredentials,
        method: str,
        url: str,
        params: Mapping[str, Any] | None = None,
        body: Mapping[str, Any] | None = None,
    ) -> SignedHeaders:
        if method.upper() == "GET":
            data_to_sign = f"{url}?{self.serialize_query(params)}" if params else url
        else:
            data_to_sign = f"{url}{self.serialize_body(body or {})}"
        nonce = self.generate_nonce()
        signature = self.sign(f"{credentials.api_key}{data_to_sign}{nonce}", credentials)
        return SignedHeaders(
            headers={
                "X-API-KEY": credentials.api_key,
                "X-API-NONCE": str(nonce),
                "X-API-SIGN": signature,
            },
            signature=signature,
            nonce=nonce,
            data_to_sign=data_to_sign,
        )
