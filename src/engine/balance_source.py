"""Monitored balance readers."""

from __future__ import annotations

from engine.collaborators import ExternalFailure
from market_client.chain import ChainReader


class Web3BalanceSource:
    """Native chain balance of the user's own address."""

    def __init__(self, chain: ChainReader) -> None:
        self.chain = chain

    def get_balance(self, user: str) -> int:
        try:
            return self.chain.get_native_balance(user)
        except Exception as exc:
            raise ExternalFailure("balance", f"balance read failed for {user}: {exc}") from exc
