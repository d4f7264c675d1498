"""devtools-dispatch - session-multiplexed client for remote debugging protocols.

One Dispatcher owns one connection and multiplexes over it:
- commands: correlated by integer id, answered in any order
- events: routed by (session, domain, event) to subscribed handlers
- sessions: a tree of attached targets under the root (browser) session

Transports:
- websocket: the engine's remote debugging WebSocket
- stream: delimited frames over a pipe or socket
- memory: in-process, for tests and embedding
"""

from .anomalies import Anomaly, AnomalyKind, AnomalyLog
from .config import DEFAULT_HTTP_ENDPOINT, DispatcherConfig, TransportConfig
from .discovery import BrowserEndpoint, BrowserVersion, TargetDescriptor
from .dispatcher import CommandHandle, Dispatcher
from .domains import DomainProxy, SessionHandle
from .errors import (
    CommandCancelledError,
    CommandTimeoutError,
    ConnectionClosedError,
    DispatchError,
    DuplicateSessionError,
    MalformedMessageError,
    ProtocolError,
    SessionDetachedError,
)
from .pending import CommandStatus, PendingCommandTable, PendingEntry
from .protocol import ROOT_SESSION_ID, Command, MessageCodec, SchemaTable, Stability, default_schema
from .router import EventRouter, Subscription
from .sessions import Session, SessionRegistry, SessionState
from .transport import (
    BaseTransport,
    MemoryTransport,
    StreamTransport,
    Transport,
    TransportState,
    WebSocketTransport,
)

__version__ = "0.1.0"

__all__ = [
    # Dispatcher
    "Dispatcher",
    "CommandHandle",
    "SessionHandle",
    "DomainProxy",
    # Components
    "MessageCodec",
    "Command",
    "ROOT_SESSION_ID",
    "PendingCommandTable",
    "PendingEntry",
    "CommandStatus",
    "SessionRegistry",
    "Session",
    "SessionState",
    "EventRouter",
    "Subscription",
    "SchemaTable",
    "Stability",
    "default_schema",
    "Anomaly",
    "AnomalyKind",
    "AnomalyLog",
    # Configuration
    "DispatcherConfig",
    "TransportConfig",
    "DEFAULT_HTTP_ENDPOINT",
    # Transports
    "Transport",
    "BaseTransport",
    "TransportState",
    "WebSocketTransport",
    "StreamTransport",
    "MemoryTransport",
    # Discovery
    "BrowserEndpoint",
    "BrowserVersion",
    "TargetDescriptor",
    # Errors
    "DispatchError",
    "MalformedMessageError",
    "ProtocolError",
    "SessionDetachedError",
    "CommandCancelledError",
    "CommandTimeoutError",
    "DuplicateSessionError",
    "ConnectionClosedError",
]
