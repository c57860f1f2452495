"""
Per-client streaming sessions and the HTTP surface that serves them
"""

from .session import SessionMode, SessionRequest, StreamingSession
from .server import create_app

__all__ = [
    'SessionMode',
    'SessionRequest',
    'StreamingSession',
    'create_app'
]
