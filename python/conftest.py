"""
Shared fakes for the tracker tests. No network access.
"""

import asyncio
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

import pytest

from chains.config import CHAIN_TABLE
from chains.errors import NotAToken, TrackerError
from chains.models import Block, Receipt, TokenMetadata, Transaction

ETHEREUM = replace(CHAIN_TABLE[1], http_url="http://eth.test")
BSC = replace(CHAIN_TABLE[56], http_url="http://bsc.test")

TOKEN_A = "0xAAA0000000000000000000000000000000000001"
TOKEN_B = "0xBBB0000000000000000000000000000000000002"
ACCOUNT = "0x1111111111111111111111111111111111111111"


def creation_tx(tx_hash: str) -> Transaction:
    return Transaction(hash=tx_hash, to=None)


def transfer_tx(tx_hash: str) -> Transaction:
    return Transaction(hash=tx_hash, to=ACCOUNT)


class FakeSubscription:
    def __init__(self, on_block, on_error):
        self.on_block = on_block
        self.on_error = on_error
        self.cancel_calls = 0

    @property
    def active(self) -> bool:
        return self.cancel_calls == 0

    def cancel(self) -> bool:
        self.cancel_calls += 1
        return self.cancel_calls == 1


class FakeChainClient:
    """Stands in for ChainClient; blocks are pushed by the test"""

    def __init__(self, chain=ETHEREUM):
        self.chain = chain
        self.receipts: Dict[str, Optional[str]] = {}
        self.receipt_errors: Dict[str, Exception] = {}
        self.tokens: Dict[str, Tuple[str, str]] = {}
        self.metadata_errors: Dict[str, Exception] = {}
        self.subscribe_error: Optional[Exception] = None
        self.subscriptions: List[FakeSubscription] = []
        self.receipt_requests: List[str] = []

        self.gas_price_wei: Optional[int] = 25 * 10**9
        self.balance_wei: Optional[int] = 2 * 10**18
        self.gas_error: Optional[Exception] = None
        self.balance_error: Optional[Exception] = None
        self.balance_requests: List[str] = []

    @property
    def name(self) -> str:
        return self.chain.name

    def deploy(self, tx_hash: str, address: Optional[str], token: Optional[Tuple[str, str]] = None):
        self.receipts[tx_hash] = address
        if address and token:
            self.tokens[address] = token

    def subscribe_blocks(self, on_block, on_error) -> FakeSubscription:
        if self.subscribe_error is not None:
            raise self.subscribe_error
        subscription = FakeSubscription(on_block, on_error)
        self.subscriptions.append(subscription)
        return subscription

    async def push(self, number: int, *transactions: Transaction):
        block = Block(number=number, transactions=tuple(transactions))
        for subscription in list(self.subscriptions):
            if subscription.active:
                await subscription.on_block(block)

    def fail_feed(self, error: TrackerError):
        for subscription in self.subscriptions:
            subscription.on_error(error)

    async def get_transaction_receipt(self, tx_hash: str) -> Receipt:
        self.receipt_requests.append(tx_hash)
        await asyncio.sleep(0)
        if tx_hash in self.receipt_errors:
            raise self.receipt_errors[tx_hash]
        return Receipt(transaction_hash=tx_hash, block_number=None,
                       contract_address=self.receipts.get(tx_hash))

    async def read_token_metadata(self, address: str) -> TokenMetadata:
        await asyncio.sleep(0)
        if address in self.metadata_errors:
            raise self.metadata_errors[address]
        if address not in self.tokens:
            raise NotAToken(f"Not an ERC-20 contract at {address}", chain=self.name)
        name, symbol = self.tokens[address]
        return TokenMetadata(name=name, symbol=symbol)

    async def get_gas_price(self) -> int:
        if self.gas_error is not None:
            raise self.gas_error
        return self.gas_price_wei

    async def get_native_balance(self, address: str) -> int:
        self.balance_requests.append(address)
        if self.balance_error is not None:
            raise self.balance_error
        return self.balance_wei


class FakeOracle:
    def __init__(self, prices: Optional[Dict[str, float]] = None, error: Optional[Exception] = None):
        self.prices = prices if prices is not None else {'ETH': 3000.0, 'BNB': 600.0}
        self.error = error
        self.gate: Optional[asyncio.Event] = None
        self.requests: List[str] = []

    async def get_usd_price(self, symbol: str) -> Optional[float]:
        self.requests.append(symbol)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.prices.get(symbol)


async def settle(rounds: int = 20):
    """Let queued callbacks and tasks run"""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def eth_client() -> FakeChainClient:
    return FakeChainClient(ETHEREUM)


@pytest.fixture
def bsc_client() -> FakeChainClient:
    return FakeChainClient(BSC)


@pytest.fixture
def oracle() -> FakeOracle:
    return FakeOracle()
