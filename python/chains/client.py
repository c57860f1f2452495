"""
EVM Chain Client
One logical capability set per chain: block subscription (WebSocket
newHeads or HTTP polling), receipts, token metadata probes, gas price and
native balance. Raw web3/aiohttp failures are translated into the
tracker's error taxonomy here and nowhere else.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

import aiohttp
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3, WebSocketProvider
from eth_abi.exceptions import InsufficientDataBytes
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    TransactionNotFound,
    Web3Exception,
)
from web3.middleware import ExtraDataToPOAMiddleware

from .config import ChainHandle
from .errors import NotAToken, ReceiptNotFound, SubscriptionTerminated, TrackerError, TransportError
from .models import Block, Receipt, TokenMetadata, Transaction

logger = logging.getLogger(__name__)

BlockCallback = Callable[[Block], Awaitable[None]]
ErrorCallback = Callable[[TrackerError], None]

# Failures of the wire itself, as opposed to the node answering with an error
NETWORK_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)
READ_ERRORS = (Web3Exception, ValueError) + NETWORK_ERRORS
# Definitive answers from the contract: reverted, empty or undecodable output
NOT_A_TOKEN_ERRORS = (ContractLogicError, BadFunctionCallOutput, InsufficientDataBytes, UnicodeDecodeError)

# ABI for minimal ERC20 interface
ERC20_ABI = [
    {
        "constant": True,
        "inputs": [],
        "name": "name",
        "outputs": [{"name": "", "type": "string"}],
        "type": "function"
    },
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "type": "function"
    }
]


class BlockSubscription:
    """One listener on a chain's shared block feed"""

    def __init__(self, client: 'ChainClient', on_block: BlockCallback, on_error: ErrorCallback):
        self.client = client
        self.on_block = on_block
        self.on_error = on_error
        self._cancelled = False
        self._terminated = False

    @property
    def active(self) -> bool:
        return not self._cancelled and not self._terminated

    def cancel(self) -> bool:
        """Stop listening. Returns False when already cancelled"""
        if self._cancelled:
            return False
        self._cancelled = True
        self.client._unsubscribe(self)
        logger.debug(f"{self.client.name} block subscription cancelled")
        return True

    def _terminate(self, error: SubscriptionTerminated):
        if not self.active:
            return
        self._terminated = True
        self.on_error(error)


class ChainClient:
    """Shared, read-only client for one chain"""

    MAX_BLOCKS_PER_ROUND = 100
    MAX_POLL_FAILURES = 3

    def __init__(self, chain: ChainHandle, poll_interval: float = 2.0,
                 w3: Optional[AsyncWeb3] = None):
        self.chain = chain
        self.poll_interval = poll_interval

        # HTTP provider for on-demand reads (receipts, metadata, stats)
        if w3 is None:
            w3 = AsyncWeb3(AsyncHTTPProvider(chain.http_url))
            if chain.poa:
                w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        self.w3 = w3

        # One block feed per chain, fanned out to every subscriber
        self._subscriptions: List[BlockSubscription] = []
        self._feed: Optional[asyncio.Task] = None

    @property
    def name(self) -> str:
        return self.chain.name

    def _transport_error(self, what: str, exc: BaseException) -> TransportError:
        return TransportError(f"{what} failed on {self.name}: {exc}", chain=self.name)

    async def connect(self):
        """Check the HTTP endpoint and log where the chain is"""
        try:
            if not await self.w3.is_connected():
                raise TransportError(f"Failed to connect to {self.name} RPC", chain=self.name)
            chain_id = await self.w3.eth.chain_id
            latest_block = await self.w3.eth.block_number
        except READ_ERRORS as e:
            raise self._transport_error("connect", e) from e

        if chain_id != self.chain.chain_id:
            logger.warning(f"{self.name} RPC reports chain id {chain_id}, expected {self.chain.chain_id}")
        logger.info(f"Connected to {self.name} (Chain ID: {chain_id}, Block: {latest_block}, "
                    f"feed: {'websocket' if self.chain.has_socket else 'http polling'})")

    async def close(self):
        """Stop the block feed and release the HTTP provider's connection pool"""
        if self._feed is not None:
            self._feed.cancel()
            self._feed = None
        disconnect = getattr(self.w3.provider, 'disconnect', None)
        if disconnect is not None:
            await disconnect()

    # ------------------------------------------------------------------
    # Pull reads
    # ------------------------------------------------------------------

    async def get_block_number(self) -> int:
        try:
            return await self.w3.eth.block_number
        except READ_ERRORS as e:
            raise self._transport_error("eth_blockNumber", e) from e

    async def get_block(self, number: int) -> Block:
        try:
            raw = await self.w3.eth.get_block(number, full_transactions=True)
        except READ_ERRORS as e:
            raise self._transport_error(f"eth_getBlockByNumber({number})", e) from e

        transactions = tuple(
            Transaction(hash=Web3.to_hex(tx['hash']), to=tx.get('to'))
            for tx in raw['transactions']
            if not isinstance(tx, (bytes, str))  # hash-only entries carry no recipient
        )
        return Block(number=raw['number'], transactions=transactions)

    async def get_transaction_receipt(self, tx_hash: str) -> Receipt:
        try:
            raw = await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound as e:
            raise ReceiptNotFound(f"No receipt for {tx_hash} on {self.name}", chain=self.name) from e
        except READ_ERRORS as e:
            raise self._transport_error(f"eth_getTransactionReceipt({tx_hash})", e) from e

        return Receipt(
            transaction_hash=tx_hash,
            block_number=raw.get('blockNumber'),
            contract_address=raw.get('contractAddress'),
        )

    async def read_token_metadata(self, address: str) -> TokenMetadata:
        """
        Probe name() and symbol(). Reverts, undecodable output and missing
        accessors mean NotAToken; any other failure (network, node-side RPC
        errors such as rate limits) is TransportError.
        """
        contract = self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=ERC20_ABI)
        name, symbol = await asyncio.gather(
            contract.functions.name().call(),
            contract.functions.symbol().call(),
            return_exceptions=True,
        )

        for result in (name, symbol):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, NOT_A_TOKEN_ERRORS) or not isinstance(result, (str, BaseException)):
                raise NotAToken(f"Not an ERC-20 contract at {address}: {result!r}", chain=self.name)

        for result in (name, symbol):
            if isinstance(result, BaseException):
                raise self._transport_error(f"metadata probe at {address}", result)

        return TokenMetadata(name=name, symbol=symbol)

    async def get_gas_price(self) -> int:
        """Gas price in wei"""
        try:
            return await self.w3.eth.gas_price
        except READ_ERRORS as e:
            raise self._transport_error("eth_gasPrice", e) from e

    async def get_native_balance(self, address: str) -> int:
        """Native balance in wei"""
        try:
            return await self.w3.eth.get_balance(Web3.to_checksum_address(address))
        except READ_ERRORS as e:
            raise self._transport_error(f"eth_getBalance({address})", e) from e

    # ------------------------------------------------------------------
    # Block subscription
    # ------------------------------------------------------------------

    def subscribe_blocks(self, on_block: BlockCallback, on_error: ErrorCallback) -> BlockSubscription:
        """
        Feed full blocks to on_block, one at a time, in the order the chain
        produced them. All subscribers share one feed per chain; it starts
        with the first subscriber and stops with the last. A feed that ends
        for any reason other than cancel() is reported once to each
        subscriber's on_error as SubscriptionTerminated.
        """
        subscription = BlockSubscription(self, on_block, on_error)
        self._subscriptions.append(subscription)
        if self._feed is None or self._feed.done():
            self._feed = asyncio.create_task(self._run_feed(), name=f"blocks:{self.name}")
        return subscription

    def _unsubscribe(self, subscription: BlockSubscription):
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
        if not self._subscriptions and self._feed is not None:
            self._feed.cancel()
            self._feed = None
            logger.debug(f"{self.name} block feed stopped, no subscribers left")

    async def _dispatch(self, block: Block):
        subscribers = [s for s in self._subscriptions if s.active]
        results = await asyncio.gather(
            *(s.on_block(block) for s in subscribers),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                logger.error(f"{self.name} block {block.number} handler failed: {result}", exc_info=result)

    async def _run_feed(self):
        try:
            if self.chain.has_socket:
                await self._socket_heads(self._dispatch)
            else:
                await self._poll_heads(self._dispatch)
            reason = "block feed closed"
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = f"block feed terminated: {e}"

        logger.error(f"{self.name} {reason}")
        subscribers, self._subscriptions = self._subscriptions, []
        self._feed = None
        for subscription in subscribers:
            subscription._terminate(SubscriptionTerminated(f"{self.name} {reason}", chain=self.name))

    async def _deliver_range(self, on_block: BlockCallback, first: int, last: int):
        for number in range(first, last + 1):
            await on_block(await self.get_block(number))

    async def _socket_heads(self, on_block: BlockCallback):
        """
        Persistent newHeads subscription; missed heights are back-filled over
        HTTP. Heads below the highest seen are skipped, a repeated height is
        delivered again (reorg replacement).
        """
        last_seen: Optional[int] = None

        async with AsyncWeb3(WebSocketProvider(self.chain.wss_url)) as ws:
            subscription_id = await ws.eth.subscribe('newHeads')
            logger.info(f"{self.name} newHeads subscription {subscription_id} open")

            async for message in ws.socket.process_subscriptions():
                head = message['result']['number']
                if isinstance(head, str):
                    head = int(head, 16)

                if last_seen is not None:
                    if head < last_seen:
                        logger.debug(f"{self.name} ignoring head {head} below {last_seen}")
                        continue
                    if head > last_seen + 1:
                        first = max(last_seen + 1, head - self.MAX_BLOCKS_PER_ROUND)
                        await self._deliver_range(on_block, first, head - 1)

                await on_block(await self.get_block(head))
                last_seen = head

    async def _poll_heads(self, on_block: BlockCallback):
        """HTTP polling loop for chains without a socket endpoint"""
        last_block = await self.get_block_number()
        failures = 0
        logger.info(f"{self.name} polling from block {last_block} every {self.poll_interval}s")

        while True:
            try:
                current_block = await self.get_block_number()
                if current_block > last_block:
                    to_block = min(current_block, last_block + self.MAX_BLOCKS_PER_ROUND)
                    await self._deliver_range(on_block, last_block + 1, to_block)
                    last_block = to_block
                failures = 0
            except TransportError as e:
                failures += 1
                if failures >= self.MAX_POLL_FAILURES:
                    raise
                logger.warning(f"{self.name} poll failed ({failures}/{self.MAX_POLL_FAILURES}): {e}")

            await asyncio.sleep(self.poll_interval * (1 + failures))
