"""
Native asset USD prices from CoinGecko
"""

import asyncio
import logging
from typing import Dict, Optional

import aiohttp

from chains.config import CHAIN_TABLE

logger = logging.getLogger(__name__)

DEFAULT_API = "https://api.coingecko.com/api/v3"

# Native symbol -> CoinGecko coin id, derived from the chain table
PRICE_IDS: Dict[str, str] = {c.native_symbol: c.price_id for c in CHAIN_TABLE.values()}


class CoinGeckoPriceOracle:
    """Uncached price lookups. None means unavailable, never an exception"""

    def __init__(self, session: aiohttp.ClientSession, api_url: str = DEFAULT_API,
                 price_ids: Optional[Dict[str, str]] = None, timeout: float = 10.0):
        self.session = session
        self.api_url = api_url.rstrip('/')
        self.price_ids = dict(PRICE_IDS if price_ids is None else price_ids)
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def get_usd_price(self, symbol: str) -> Optional[float]:
        coin_id = self.price_ids.get(symbol.upper())
        if not coin_id:
            logger.warning(f"No price id for {symbol}")
            return None

        url = f"{self.api_url}/simple/price"
        params = {'ids': coin_id, 'vs_currencies': 'usd'}
        try:
            async with self.session.get(url, params=params, timeout=self.timeout) as response:
                if response.status == 429:
                    logger.warning("CoinGecko rate limit hit")
                    return None
                if response.status != 200:
                    logger.warning(f"CoinGecko returned status {response.status} for {coin_id}")
                    return None
                data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"Error fetching {symbol} price: {e}")
            return None

        price = (data.get(coin_id) or {}).get('usd') if isinstance(data, dict) else None
        if isinstance(price, bool) or not isinstance(price, (int, float)):
            return None
        return float(price)
