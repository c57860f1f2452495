"""
Stats Poller
Emits a StatsSnapshot for one chain (and optionally one account) right
away and then on a fixed period. Price, gas price and balance are fetched
concurrently and fail independently.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from web3 import Web3

from chains.client import ChainClient
from chains.models import StatsSnapshot

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[StatsSnapshot], None]


class StatsPoller:
    """Periodic price / gas / balance snapshots for a chain and account"""

    def __init__(self, client: ChainClient, oracle, on_snapshot: SnapshotCallback,
                 account: Optional[str] = None, interval: float = 30.0):
        self.client = client
        self.oracle = oracle
        self.on_snapshot = on_snapshot
        self.account = account
        self.interval = interval

        self._task: Optional[asyncio.Task] = None
        self._cancelled = False

    @property
    def chain_name(self) -> str:
        return self.client.name

    def start(self):
        if self._task is not None:
            raise RuntimeError(f"{self.chain_name} stats poller already started")
        self._task = asyncio.create_task(self._run(), name=f"stats:{self.chain_name}")

    def cancel(self) -> bool:
        """Stop the timer and drop any snapshot still in flight. Idempotent"""
        if self._cancelled:
            return False
        self._cancelled = True
        if self._task is not None:
            self._task.cancel()
        return True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def _run(self):
        loop = asyncio.get_running_loop()
        next_tick = loop.time()

        while not self._cancelled:
            snapshot = await self.poll_once()
            if self._cancelled:
                return
            self.on_snapshot(snapshot)

            next_tick = self.next_deadline(next_tick, loop.time())
            await asyncio.sleep(max(0.0, next_tick - loop.time()))

    def next_deadline(self, previous: float, now: float) -> float:
        """
        Fixed period, independent of how long the fetches took. A poll that
        overran whole periods does not leave missed ticks to fire back to back.
        """
        return max(previous + self.interval, now)

    async def poll_once(self) -> StatsSnapshot:
        """Fetch all fields concurrently; waits for every fetch to settle"""
        price, gas, balance = await asyncio.gather(
            self._settle("price", self.oracle.get_usd_price(self.client.chain.native_symbol)),
            self._settle("gas price", self._gas_price_gwei()),
            self._settle("balance", self._balance_native()),
        )
        return StatsSnapshot(
            chain_id=self.client.chain.chain_id,
            native_price_usd=price,
            gas_price_gwei=gas,
            native_balance=balance,
        )

    async def _settle(self, what: str, fetch: Awaitable[Optional[float]]) -> Optional[float]:
        try:
            return await fetch
        except Exception as e:
            logger.warning(f"{self.chain_name} {what} unavailable: {e}")
            return None

    async def _gas_price_gwei(self) -> Optional[float]:
        wei = await self.client.get_gas_price()
        return float(Web3.from_wei(wei, 'gwei'))

    async def _balance_native(self) -> Optional[float]:
        if not self.account:
            return None
        wei = await self.client.get_native_balance(self.account)
        return float(Web3.from_wei(wei, 'ether'))
