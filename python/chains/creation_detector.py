"""
Contract Creation Detector
Watches one chain's blocks for contract-creation transactions and emits a
TokenCreation for every deployed contract that answers name()/symbol().
"""

import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Callable, Deque, List, Optional, Set, Tuple

from .client import BlockSubscription, ChainClient
from .errors import NotAToken, ReceiptNotFound, TrackerError, TransportError
from .models import Block, TokenCreation, Transaction

logger = logging.getLogger(__name__)

CreationCallback = Callable[[TokenCreation], None]
ErrorCallback = Callable[[TrackerError], None]


class DetectorState(str, Enum):
    IDLE = 'idle'
    SUBSCRIBED = 'subscribed'
    SCANNING = 'scanning'
    CANCELLED = 'cancelled'


class ContractCreationDetector:
    """Per-chain scanner: Idle -> Subscribed -> (Scanning -> Subscribed)* -> Cancelled"""

    SEEN_CAPACITY = 50000

    def __init__(self, client: ChainClient, on_creation: CreationCallback, on_error: ErrorCallback):
        self.client = client
        self.on_creation = on_creation
        self.on_error = on_error

        self.state = DetectorState.IDLE
        self.last_block: Optional[int] = None
        self._subscription: Optional[BlockSubscription] = None

        # Simple in-memory dedupe of (address, block_number)
        self._seen: Set[Tuple[str, int]] = set()
        self._seen_q: Deque[Tuple[str, int]] = deque(maxlen=self.SEEN_CAPACITY)

    @property
    def chain_name(self) -> str:
        return self.client.name

    def start(self):
        """Subscribe to the chain's block feed"""
        if self.state is not DetectorState.IDLE:
            raise RuntimeError(f"{self.chain_name} detector already {self.state.value}")
        self._subscription = self.client.subscribe_blocks(self._handle_block, self._handle_feed_error)
        self.state = DetectorState.SUBSCRIBED
        logger.info(f"Watching {self.chain_name} for contract creations")

    def cancel(self) -> bool:
        """Unsubscribe. Safe to call any number of times"""
        if self.state is DetectorState.CANCELLED:
            return False
        self.state = DetectorState.CANCELLED
        if self._subscription is not None:
            self._subscription.cancel()
        return True

    @property
    def cancelled(self) -> bool:
        return self.state is DetectorState.CANCELLED

    def _remember(self, key: Tuple[str, int]) -> bool:
        if key in self._seen:
            return False
        if len(self._seen_q) == self._seen_q.maxlen:
            self._seen.discard(self._seen_q[0])
        self._seen.add(key)
        self._seen_q.append(key)
        return True

    def _handle_feed_error(self, error: TrackerError):
        if self.cancelled:
            return
        self.on_error(error)

    async def _handle_block(self, block: Block):
        if self.cancelled:
            return
        if self.last_block is not None and block.number < self.last_block:
            logger.debug(f"{self.chain_name} ignoring stale block {block.number} (at {self.last_block})")
            return

        self.state = DetectorState.SCANNING
        try:
            creations = [tx for tx in block.transactions if tx.is_contract_creation]
            if creations:
                logger.debug(f"{self.chain_name} block {block.number}: {len(creations)} contract creation(s)")

            # Transactions inside a block are probed concurrently, emitted in block order
            results: List[Optional[TokenCreation]] = await asyncio.gather(
                *(self._inspect(tx, block.number) for tx in creations)
            )
        finally:
            if not self.cancelled:
                self.state = DetectorState.SUBSCRIBED

        if self.cancelled:
            return
        self.last_block = block.number

        for creation in results:
            if creation is None or not self._remember(creation.key):
                continue
            logger.info(f"New {self.chain_name} token: {creation.symbol} ({creation.name}) "
                        f"at {creation.address}, block {creation.block_number}")
            self.on_creation(creation)

    async def _inspect(self, tx: Transaction, block_number: int) -> Optional[TokenCreation]:
        """Resolve the deployed address of one creation tx and probe it"""
        try:
            receipt = await self.client.get_transaction_receipt(tx.hash)
            if not receipt.contract_address:
                return None
            metadata = await self.client.read_token_metadata(receipt.contract_address)
        except NotAToken as e:
            logger.debug(str(e))
            return None
        except (TransportError, ReceiptNotFound) as e:
            logger.error(f"{self.chain_name} tx {tx.hash}: {e}")
            if not self.cancelled:
                self.on_error(e)
            return None

        return TokenCreation(
            address=receipt.contract_address,
            name=metadata.name,
            symbol=metadata.symbol,
            block_number=block_number,
        )
