"""Transport-agnostic protocol layer.

Defines the wire envelopes and the codec shared by every transport.

Key concepts:
- Commands: client -> remote requests carrying an integer correlation id
- Responses: remote -> client answers carrying the same id
- Events: remote -> client notifications with no id
- Sessions: every frame may carry a `sessionId`; no tag means the root session
"""

from .codec import DecodedMessage, MessageCodec
from .commands import ROOT_SESSION_ID, Command
from .messages import (
    CommandFrame,
    ErrorPayload,
    EventEnvelope,
    ResponseEnvelope,
    join_method,
    split_method,
)
from .schema import (
    DomainSchema,
    MemberKind,
    MemberSpec,
    SchemaTable,
    Stability,
    default_schema,
)

__all__ = [
    "Command",
    "CommandFrame",
    "DecodedMessage",
    "DomainSchema",
    "ErrorPayload",
    "EventEnvelope",
    "MemberKind",
    "MemberSpec",
    "MessageCodec",
    "ROOT_SESSION_ID",
    "ResponseEnvelope",
    "SchemaTable",
    "Stability",
    "default_schema",
    "join_method",
    "split_method",
]
