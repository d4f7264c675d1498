"""Command definitions for the protocol layer.

A command is a request addressed to one session that expects exactly one
response. Its integer `id` is assigned by the pending-command table when the
command is registered, never by the caller.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from .messages import join_method, split_method

# The browser-level connection itself. Frames without a sessionId belong here.
ROOT_SESSION_ID = ""


class Command(BaseModel):
    """A command from this client to the remote engine.

    Example (as it appears on the wire once encoded):
        {
            "id": 7,
            "method": "Page.navigate",
            "params": {"url": "https://example.com"},
            "sessionId": "8C1A..."
        }

    Payloads are opaque: `params` is passed through untouched.
    """

    id: int | None = None
    session_id: str = ROOT_SESSION_ID
    domain: str
    method: str
    params: dict[str, Any] = Field(default_factory=dict)
    issued_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def qualified_name(self) -> str:
        """Flattened `<Domain>.<method>` name."""
        return join_method(self.domain, self.method)

    @property
    def is_root(self) -> bool:
        return self.session_id == ROOT_SESSION_ID

    @classmethod
    def create(
        cls,
        domain: str,
        method: str,
        params: dict[str, Any] | None = None,
        session_id: str = ROOT_SESSION_ID,
    ) -> Command:
        """Factory method for creating commands."""
        return cls(
            session_id=session_id or ROOT_SESSION_ID,
            domain=domain,
            method=method,
            params=params or {},
        )

    @classmethod
    def from_qualified(
        cls,
        name: str,
        params: dict[str, Any] | None = None,
        session_id: str = ROOT_SESSION_ID,
    ) -> Command:
        """Create a command from a flattened `<Domain>.<method>` name."""
        domain, method = split_method(name)
        return cls.create(domain, method, params, session_id)

    # Convenience factories for the Target commands the dispatcher issues itself

    @classmethod
    def attach_to_target(
        cls,
        target_id: str,
        flatten: bool = True,
        session_id: str = ROOT_SESSION_ID,
    ) -> Command:
        """Create a Target.attachToTarget command."""
        params: dict[str, Any] = {"targetId": target_id}
        if flatten:
            params["flatten"] = True
        return cls.create("Target", "attachToTarget", params, session_id)

    @classmethod
    def detach_from_target(
        cls,
        child_session_id: str,
        session_id: str = ROOT_SESSION_ID,
    ) -> Command:
        """Create a Target.detachFromTarget command."""
        return cls.create("Target", "detachFromTarget", {"sessionId": child_session_id}, session_id)

    @classmethod
    def send_message_to_target(
        cls,
        child_session_id: str,
        message: str,
        session_id: str = ROOT_SESSION_ID,
    ) -> Command:
        """Create a Target.sendMessageToTarget command (non-flattened sessions)."""
        return cls.create(
            "Target",
            "sendMessageToTarget",
            {"sessionId": child_session_id, "message": message},
            session_id,
        )
