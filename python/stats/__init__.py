"""
Market statistics polling
"""

from .price_oracle import CoinGeckoPriceOracle
from .stats_poller import StatsPoller

__all__ = [
    'CoinGeckoPriceOracle',
    'StatsPoller'
]
