"""
API package for StreamVio
"""

from .app import create_app
from .websocket import broadcast_event, websocket_connections

__all__ = [
    "create_app",
    "broadcast_event",
    "websocket_connections",
]
