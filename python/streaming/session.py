"""
Streaming Session Manager
One session per connected client: wires either the multi-chain creation
feed or a stats poller to a single bounded outbound queue, and tears
everything down exactly once when the client goes away.
"""

import asyncio
import itertools
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Dict, Iterable, List, Mapping, Optional, Union

from chains.aggregator import ExclusionPredicate, MultiChainAggregator
from chains.client import ChainClient
from chains.errors import InvalidInput, TrackerError
from chains.models import ContractCreationEvent, StatsSnapshot
from stats.stats_poller import StatsPoller

logger = logging.getLogger(__name__)

ADDRESS_RE = re.compile(r'^0x[a-fA-F0-9]{40}$')

# Queue marker that wakes the reader when the session closes
_CLOSED = object()


class SessionMode(str, Enum):
    CONTRACTS = 'contracts'
    STATS = 'stats'


def _parse_chain_id(raw: str, configured: List[int]) -> int:
    try:
        chain_id = int(raw)
    except ValueError:
        raise InvalidInput(f"chainId must be an integer, got {raw!r}") from None
    if chain_id not in configured:
        raise InvalidInput(f"Chain {chain_id} is not configured")
    return chain_id


@dataclass(frozen=True)
class SessionRequest:
    mode: SessionMode
    chain_id: int
    account: Optional[str] = None

    @classmethod
    def from_query(cls, query: Mapping[str, str], chain_ids: Iterable[int],
                   primary_chain_id: int) -> 'SessionRequest':
        """
        Parse ?type=&chainId=&address=. Unknown type raises InvalidInput, as
        does a bad chainId on a stats stream; a malformed address just means
        no account.
        """
        configured = list(chain_ids)
        if not configured:
            raise InvalidInput("No chains configured")

        raw_mode = (query.get('type') or SessionMode.CONTRACTS.value).strip().lower()
        try:
            mode = SessionMode(raw_mode)
        except ValueError:
            raise InvalidInput(f"Unknown stream type: {raw_mode!r}") from None

        chain_id = primary_chain_id if primary_chain_id in configured else configured[0]
        raw_chain = (query.get('chainId') or '').strip()
        if raw_chain:
            try:
                chain_id = _parse_chain_id(raw_chain, configured)
            except InvalidInput as e:
                # Contracts streams cover every configured chain; chainId only selects the stats chain
                if mode is SessionMode.STATS:
                    raise
                logger.debug(f"Ignoring chainId for a contracts stream: {e}")

        raw_account = (query.get('address') or '').strip()
        account = raw_account if ADDRESS_RE.match(raw_account) else None
        if raw_account and account is None:
            logger.warning(f"Ignoring malformed account address {raw_account!r}")

        return cls(mode=mode, chain_id=chain_id, account=account)


class StreamingSession:
    """Lifetime-scoped owner of one client's watches, timers and output queue"""

    _ids = itertools.count(1)

    def __init__(self, request: SessionRequest, clients: Mapping[int, ChainClient], oracle=None,
                 exclude: Optional[ExclusionPredicate] = None, stats_interval: float = 30.0,
                 queue_size: int = 1000):
        self.id = next(self._ids)
        self.request = request
        self.clients = clients
        self.oracle = oracle
        self.exclude = exclude
        self.stats_interval = stats_interval

        self._queue: asyncio.Queue = asyncio.Queue()
        self._queue_size = queue_size
        self._source: Optional[Union[MultiChainAggregator, StatsPoller]] = None
        self._closed = False

        self.sent = 0
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self):
        """Wire the session's source for its requested mode"""
        if self._closed:
            raise RuntimeError(f"Session {self.id} is closed")
        if self._source is not None:
            raise RuntimeError(f"Session {self.id} already started")

        if self.request.mode is SessionMode.STATS:
            client = self.clients[self.request.chain_id]
            self._source = StatsPoller(
                client,
                self.oracle,
                on_snapshot=self._emit_snapshot,
                account=self.request.account,
                interval=self.stats_interval,
            )
        else:
            self._source = MultiChainAggregator(
                self.clients.values(),
                on_event=self._emit_event,
                on_error=self._emit_error,
                exclude=self.exclude,
            )

        self._source.start()
        logger.info(f"Session {self.id} started ({self.request.mode.value}, chain {self.request.chain_id}, "
                    f"account {'set' if self.request.account else 'none'})")

    def _emit_event(self, event: ContractCreationEvent):
        self.emit(event.to_message())

    def _emit_snapshot(self, snapshot: StatsSnapshot):
        self.emit(snapshot.to_message())

    def _emit_error(self, error: TrackerError):
        self.emit(error.to_event())

    def emit(self, message: Dict) -> bool:
        """Queue a message for the client. A no-op once teardown has begun"""
        if self._closed:
            return False
        if self._queue.qsize() >= self._queue_size:
            # Slow consumer: drop newest rather than stall the chain feeds
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                logger.warning(f"Session {self.id} queue full, {self.dropped} message(s) dropped")
            return False
        self._queue.put_nowait(message)
        return True

    async def messages(self, heartbeat: Optional[float] = None) -> AsyncIterator[Optional[Dict]]:
        """
        Yield queued messages until the session closes. With a heartbeat,
        None is yielded after that many seconds without a message.
        """
        while not self._closed:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=heartbeat)
            except asyncio.TimeoutError:
                if self._closed:
                    return
                yield None
                continue
            if item is _CLOSED or self._closed:
                return
            self.sent += 1
            yield item

    def close(self) -> bool:
        """
        Cancel the source (detectors, subscriptions, timers), then close the
        output. Idempotent; never waits on the network.
        """
        if self._closed:
            return False
        self._closed = True

        if self._source is not None:
            self._source.cancel()

        # Pending messages are discarded
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

        logger.info(f"Session {self.id} closed ({self.sent} sent, {self.dropped} dropped)")
        return True
