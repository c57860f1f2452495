"""
Trade executor collaborator
The tracker never signs or sends trades. This module only describes the
interface a wallet-side executor implements and the router path it uses.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from web3 import Web3

from chains.config import ChainHandle

logger = logging.getLogger(__name__)

BUY = 'buy'
SELL = 'sell'


@dataclass(frozen=True)
class TradeResult:
    tx_hash: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.tx_hash is not None and self.error is None


@dataclass(frozen=True)
class TradePolicy:
    """Minimum swap output in the output token's smallest unit. 0 accepts any output"""
    min_amount_out: int = 0
    deadline_seconds: int = 600

    def __post_init__(self):
        if self.min_amount_out < 0:
            raise ValueError("min_amount_out must be >= 0")
        if self.min_amount_out == 0:
            logger.warning("Trade policy has min_amount_out=0: swaps have no slippage protection")

    @property
    def slippage_protected(self) -> bool:
        return self.min_amount_out > 0


def swap_path(chain: ChainHandle, token_address: str, side: str) -> List[str]:
    """Router path for a native<->token swap: wrapped native first for buys, last for sells"""
    token = Web3.to_checksum_address(token_address)
    wrapped = Web3.to_checksum_address(chain.wrapped_native_address)
    if side == BUY:
        return [wrapped, token]
    if side == SELL:
        return [token, wrapped]
    raise ValueError(f"Unknown trade side: {side!r}")


class TradeExecutor(ABC):
    """Wallet-side swap execution through the chain's router"""

    def __init__(self, chain: ChainHandle, policy: Optional[TradePolicy] = None):
        self.chain = chain
        self.policy = policy or TradePolicy()

    @property
    def router_address(self) -> str:
        return self.chain.router_address

    @abstractmethod
    async def buy(self, token_address: str, native_amount: str, account: str) -> TradeResult:
        """Swap native_amount of the native asset for the token"""

    @abstractmethod
    async def sell(self, token_address: str, token_amount: str, account: str) -> TradeResult:
        """Swap token_amount of the token for the native asset"""
