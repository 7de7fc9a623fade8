"""Read-only chain access: native balances and Chainlink price feeds.

Only view calls live here; nothing is signed or submitted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from web3 import Web3

LOGGER = logging.getLogger("staking_monitor.chain")

# AggregatorV3Interface: only the functions we call
AGGREGATOR_V3_ABI = [
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "latestRoundData",
        "outputs": [
            {"name": "roundId", "type": "uint80"},
            {"name": "answer", "type": "int256"},
            {"name": "startedAt", "type": "uint256"},
            {"name": "updatedAt", "type": "uint256"},
            {"name": "answeredInRound", "type": "uint80"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
]


@dataclass(frozen=True)
class RoundData:
    round_id: int
    answer: int
    updated_at: int
    decimals: int


class ChainReader:
    def __init__(self, rpc_url: str, *, timeout: float = 10.0, web3: Web3 | None = None) -> None:
        self.rpc_url = rpc_url
        self.w3 = web3 or Web3(
            Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout})
        )
        self._feed_decimals: dict[str, int] = {}

    def get_native_balance(self, address: str) -> int:
        return int(self.w3.eth.get_balance(Web3.to_checksum_address(address)))

    def latest_round(self, feed_address: str) -> RoundData:
        checksum = Web3.to_checksum_address(feed_address)
        feed = self.w3.eth.contract(address=checksum, abi=AGGREGATOR_V3_ABI)
        decimals = self._feed_decimals.get(checksum)
        if decimals is None:
            decimals = int(feed.functions.decimals().call())
            self._feed_decimals[checksum] = decimals
            LOGGER.debug("Price feed %s reports %s decimals.", checksum, decimals)
        round_id, answer, _, updated_at, _ = feed.functions.latestRoundData().call()
        return RoundData(
            round_id=int(round_id),
            answer=int(answer),
            updated_at=int(updated_at),
            decimals=decimals,
        )


def normalize_address(address: str) -> str:
    """Checksum form of ``address``; anything that is not an address raises ValueError."""
    if not isinstance(address, str) or not Web3.is_address(address):
        raise ValueError(f"Not a valid address: {address!r}")
    return Web3.to_checksum_address(address)
