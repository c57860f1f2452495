"""
Multi-Chain Aggregator
Runs one ContractCreationDetector per chain, tags creations with their
chain and merges them into a single event callback.
"""

import logging
from typing import Callable, Dict, Iterable, Optional

from .client import ChainClient
from .creation_detector import ContractCreationDetector
from .errors import TrackerError
from .models import ContractCreationEvent, TokenCreation

logger = logging.getLogger(__name__)

EventCallback = Callable[[ContractCreationEvent], None]
ErrorCallback = Callable[[TrackerError], None]
ExclusionPredicate = Callable[[str], bool]


def suffix_exclusion(suffixes: Iterable[str]) -> ExclusionPredicate:
    """Predicate matching addresses that end with any of the suffixes (case-insensitive)"""
    lowered = tuple(s.lower() for s in suffixes if s)

    def excluded(address: str) -> bool:
        return bool(lowered) and address.lower().endswith(lowered)

    return excluded


def no_exclusion(address: str) -> bool:
    return False


class MultiChainAggregator:
    """Fan-in of per-chain detectors. No ordering across chains"""

    def __init__(self, clients: Iterable[ChainClient], on_event: EventCallback,
                 on_error: ErrorCallback, exclude: Optional[ExclusionPredicate] = None):
        self.clients = list(clients)
        self.on_event = on_event
        self.on_error = on_error
        self.exclude = exclude or no_exclusion

        self.detectors: Dict[int, ContractCreationDetector] = {}
        self._cancelled = False

    def start(self):
        """Start every detector. A chain that fails to subscribe does not block the rest"""
        for client in self.clients:
            detector = ContractCreationDetector(
                client,
                on_creation=self._tagger(client),
                on_error=self._forward_error,
            )
            try:
                detector.start()
            except Exception as e:
                logger.error(f"Failed to start {client.name} detector: {e}", exc_info=True)
                self._forward_error(TrackerError(f"{client.name} unavailable: {e}", chain=client.name))
                continue
            self.detectors[client.chain.chain_id] = detector

        logger.info(f"Aggregating {len(self.detectors)}/{len(self.clients)} chains: "
                    f"{[d.chain_name for d in self.detectors.values()]}")

    def _tagger(self, client: ChainClient) -> Callable[[TokenCreation], None]:
        chain = client.chain

        def forward(creation: TokenCreation):
            if self._cancelled:
                return
            if self.exclude(creation.address):
                logger.debug(f"Filtering out {chain.name} contract {creation.address}")
                return
            self.on_event(ContractCreationEvent.from_creation(creation, chain))

        return forward

    def _forward_error(self, error: TrackerError):
        if not self._cancelled:
            self.on_error(error)

    def cancel(self) -> bool:
        """Cancel every detector. Idempotent"""
        if self._cancelled:
            return False
        self._cancelled = True
        for detector in self.detectors.values():
            detector.cancel()
        return True
