"""
Chain and tracker configuration
Chain table keyed by chain id, plus runtime settings read from .env
"""

import logging
import os
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChainHandle:
    """A configured chain. Immutable, shared by every component"""
    chain_id: int
    name: str
    native_symbol: str
    token_type: str              # "ERC20" | "BEP20"
    price_id: str                # CoinGecko coin id of the native asset
    router_address: str          # Uniswap V2 style router
    wrapped_native_address: str
    env_prefix: str              # ETHEREUM_RPC_HTTP, BNB_RPC_WSS, ...
    poa: bool = False
    http_url: Optional[str] = None
    wss_url: Optional[str] = None

    @property
    def has_socket(self) -> bool:
        return bool(self.wss_url)


# Built-in chains. RPC endpoints are filled from the environment.
CHAIN_TABLE: Dict[int, ChainHandle] = {
    1: ChainHandle(
        chain_id=1,
        name="Ethereum",
        native_symbol="ETH",
        token_type="ERC20",
        price_id="ethereum",
        router_address="0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D",  # Uniswap V2 Router02
        wrapped_native_address="0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",  # WETH9
        env_prefix="ETHEREUM",
    ),
    56: ChainHandle(
        chain_id=56,
        name="BSC",
        native_symbol="BNB",
        token_type="BEP20",
        price_id="binancecoin",
        router_address="0x10ED43C718714eb63d5aA57B78B54704E256024E",  # PancakeSwap V2 Router
        wrapped_native_address="0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c",  # WBNB
        env_prefix="BNB",
        poa=True,
    ),
    8453: ChainHandle(
        chain_id=8453,
        name="Base",
        native_symbol="ETH",
        token_type="ERC20",
        price_id="ethereum",
        router_address="0x4752ba5DBc23f44D87826276BF6Fd6b1C372aD24",  # Uniswap V2 Router02 (Base)
        wrapped_native_address="0x4200000000000000000000000000000000000006",  # WETH on Base
        env_prefix="BASE",
    ),
}

# Chains watched unless disabled in .env
DEFAULT_ENABLED = {1: True, 56: True, 8453: False}


def _env_flag(name: str, default: bool) -> bool:
    return os.getenv(name, 'true' if default else 'false').strip().lower() == 'true'


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or '').strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}, using {default}")
        return default


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or '').strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default


def load_chains(table: Optional[Dict[int, ChainHandle]] = None) -> Dict[int, ChainHandle]:
    """Return the enabled chains that have an HTTP endpoint, with URLs filled in"""
    table = CHAIN_TABLE if table is None else table
    chains: Dict[int, ChainHandle] = {}

    for chain_id, handle in table.items():
        prefix = handle.env_prefix
        if not _env_flag(f'{prefix}_ENABLED', DEFAULT_ENABLED.get(chain_id, False)):
            logger.info(f"{handle.name} disabled ({prefix}_ENABLED)")
            continue

        http_url = (os.getenv(f'{prefix}_RPC_HTTP') or '').strip()
        wss_url = (os.getenv(f'{prefix}_RPC_WSS') or '').strip()
        if not http_url:
            logger.warning(f"{handle.name} RPC not configured ({prefix}_RPC_HTTP), chain skipped")
            continue

        chains[chain_id] = replace(handle, http_url=http_url, wss_url=wss_url or None)

    return chains


@dataclass(frozen=True)
class TrackerSettings:
    """Runtime settings for the tracker service"""
    primary_chain_id: int = 1
    stats_poll_interval: float = 30.0
    http_poll_interval: float = 2.0
    excluded_address_suffixes: Tuple[str, ...] = ("4444",)
    session_queue_size: int = 1000
    stream_heartbeat: float = 15.0
    host: str = "0.0.0.0"
    port: int = 8080
    coingecko_api: str = "https://api.coingecko.com/api/v3"
    log_level: str = "INFO"
    log_file: Optional[str] = None
    chains: Dict[int, ChainHandle] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> 'TrackerSettings':
        suffixes = os.getenv('EXCLUDED_ADDRESS_SUFFIXES', '4444')
        return cls(
            primary_chain_id=_env_int('PRIMARY_CHAIN_ID', 1),
            stats_poll_interval=_env_float('STATS_POLL_INTERVAL', 30.0),
            http_poll_interval=_env_float('HTTP_POLL_INTERVAL', 2.0),
            excluded_address_suffixes=tuple(
                s.strip() for s in suffixes.split(',') if s.strip()
            ),
            session_queue_size=_env_int('SESSION_QUEUE_SIZE', 1000),
            stream_heartbeat=_env_float('STREAM_HEARTBEAT', 15.0),
            host=os.getenv('TRACKER_HOST', '0.0.0.0'),
            port=_env_int('TRACKER_PORT', 8080),
            coingecko_api=os.getenv('COINGECKO_API', 'https://api.coingecko.com/api/v3').rstrip('/'),
            log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
            log_file=os.getenv('TRACKER_LOG_FILE') or None,
            chains=load_chains(),
        )

    def chain_names(self) -> List[str]:
        return [c.name for c in self.chains.values()]
