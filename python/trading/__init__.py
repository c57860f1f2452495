"""
Trade executor interface (execution itself lives with the wallet)
"""

from .executor import BUY, SELL, TradeExecutor, TradePolicy, TradeResult, swap_path

__all__ = [
    'BUY',
    'SELL',
    'TradeExecutor',
    'TradePolicy',
    'TradeResult',
    'swap_path'
]
