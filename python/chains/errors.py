"""
Error taxonomy for the chain-watching pipeline
"""

from typing import Optional


class TrackerError(Exception):
    """Base class for tracker errors"""

    def __init__(self, message: str, chain: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.chain = chain

    def to_event(self) -> dict:
        """Inline error event as sent to stream clients"""
        return {'error': self.message, 'chain': self.chain}


class TransportError(TrackerError):
    """RPC or network failure. Recoverable, reported per call"""


class ReceiptNotFound(TrackerError):
    """The node has no receipt for a transaction hash"""


class NotAToken(TrackerError):
    """Metadata probe failed: the contract is not a fungible token"""


class InvalidInput(TrackerError):
    """Malformed request parameter"""


class SubscriptionTerminated(TrackerError):
    """A chain's block feed ended"""
