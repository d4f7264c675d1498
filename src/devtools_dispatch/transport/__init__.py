"""Transport layer.

Moves framed protocol messages between the dispatcher and the remote engine:
- WebSocket - the remote debugging endpoint (one message per WebSocket message)
- Stream - delimited frames over an asyncio stream pair (pipe mode, JSON lines)
- Memory - in-process queue for tests and embedding
"""

from .base import BaseTransport, Transport, TransportState
from .memory import MemoryTransport
from .stream import StreamTransport
from .websocket import WebSocketTransport

__all__ = [
    "BaseTransport",
    "MemoryTransport",
    "StreamTransport",
    "Transport",
    "TransportState",
    "WebSocketTransport",
]
