"""
Chain access and contract-creation detection for EVM chains
"""

from .aggregator import MultiChainAggregator, suffix_exclusion
from .client import BlockSubscription, ChainClient
from .config import CHAIN_TABLE, ChainHandle, TrackerSettings, load_chains
from .creation_detector import ContractCreationDetector, DetectorState

__all__ = [
    'BlockSubscription',
    'ChainClient',
    'CHAIN_TABLE',
    'ChainHandle',
    'ContractCreationDetector',
    'DetectorState',
    'MultiChainAggregator',
    'TrackerSettings',
    'load_chains',
    'suffix_exclusion'
]
