"""Default endpoints for the exchange API and chain reads."""

REST_URL = "https://api.nonkyc.io/api"
API_VERSION = "v2"

# Chainlink ETH/USD aggregator on Ethereum mainnet.
DEFAULT_ETH_USD_FEED = "0x5f4eC3Df9cbd43714FE2740f5E3616155c5b8419"
DEFAULT_RPC_URL = "https://ethereum-rpc.publicnode.com"


def default_rest_base_url() -> str:
    """Return the default REST base URL including the API version."""
    return f"{REST_URL}/{API_VERSION}"
