"""
Value types passed between the adapter, detector, aggregator and sessions
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


@dataclass(frozen=True)
class Transaction:
    hash: str
    to: Optional[str]            # None for a contract creation

    @property
    def is_contract_creation(self) -> bool:
        return self.to is None


@dataclass(frozen=True)
class Block:
    """A fetched block. Transient: processed then discarded"""
    number: int
    transactions: Tuple[Transaction, ...] = ()


@dataclass(frozen=True)
class Receipt:
    transaction_hash: str
    block_number: Optional[int]
    contract_address: Optional[str]


@dataclass(frozen=True)
class TokenMetadata:
    name: str
    symbol: str


@dataclass(frozen=True)
class TokenCreation:
    """A token deployment seen by one chain's detector, before chain tagging"""
    address: str
    name: str
    symbol: str
    block_number: int
    timestamp: str = field(default_factory=utc_now_iso)

    @property
    def key(self) -> Tuple[str, int]:
        return (self.address.lower(), self.block_number)


@dataclass(frozen=True)
class ContractCreationEvent:
    address: str
    name: str
    symbol: str
    block_number: int
    chain_id: int
    chain_name: str
    token_type: str
    timestamp: str

    @classmethod
    def from_creation(cls, creation: TokenCreation, chain) -> 'ContractCreationEvent':
        return cls(
            address=creation.address,
            name=creation.name,
            symbol=creation.symbol,
            block_number=creation.block_number,
            chain_id=chain.chain_id,
            chain_name=chain.name,
            token_type=chain.token_type,
            timestamp=creation.timestamp,
        )

    @property
    def key(self) -> Tuple[int, str, int]:
        return (self.chain_id, self.address.lower(), self.block_number)

    def to_message(self) -> Dict:
        return {
            'address': self.address,
            'name': self.name,
            'symbol': self.symbol,
            'blockNumber': self.block_number,
            'chainId': self.chain_id,
            'chainName': self.chain_name,
            'tokenType': self.token_type,
            'timestamp': self.timestamp,
        }


@dataclass(frozen=True)
class StatsSnapshot:
    """Market stats for one chain. Any field is None when its fetch failed"""
    chain_id: int
    native_price_usd: Optional[float] = None
    gas_price_gwei: Optional[float] = None
    native_balance: Optional[float] = None
    timestamp: str = field(default_factory=utc_now_iso)

    def to_message(self) -> Dict:
        return {
            'type': 'stats',
            'chainId': self.chain_id,
            'ethPriceUsd': self.native_price_usd,
            'gasPriceGwei': self.gas_price_gwei,
            'nativeTokenBalance': self.native_balance,
            'timestamp': self.timestamp,
        }
