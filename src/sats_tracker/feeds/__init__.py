"""Remote data sources: spot price, fee estimates and address balances."""

from sats_tracker.feeds.coingecko import CoinGeckoPriceFeed
from sats_tracker.feeds.mempool import MempoolBalanceFetcher, MempoolFeeFeed

__all__ = [
    "CoinGeckoPriceFeed",
    "MempoolBalanceFetcher",
    "MempoolFeeFeed",
]
