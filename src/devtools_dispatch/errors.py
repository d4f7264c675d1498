"""Error taxonomy for the dispatch core.

Every caller-facing failure is delivered through the future of the command
that caused it. Only `MalformedMessageError` is raised synchronously, by the
codec, and the read loop absorbs it.
"""

from __future__ import annotations

from typing import Any


class DispatchError(Exception):
    """Base class for all dispatch errors."""


class MalformedMessageError(DispatchError):
    """A frame could not be parsed or matched neither envelope shape."""

    def __init__(self, message: str, frame: str | bytes | None = None) -> None:
        super().__init__(message)
        if isinstance(frame, bytes):
            frame = frame.decode("utf-8", errors="replace")
        self.frame = frame[:200] if frame else frame


class ProtocolError(DispatchError):
    """The remote side answered a command with an error response."""

    def __init__(
        self,
        code: int | None,
        message: str,
        data: Any | None = None,
        method: str | None = None,
    ) -> None:
        super().__init__(f"{method}: {message}" if method else message)
        self.code = code
        self.message = message
        self.data = data
        self.method = method


class SessionDetachedError(DispatchError):
    """The command targets a session that is not (or no longer) active."""

    def __init__(self, session_id: str, message: str | None = None) -> None:
        super().__init__(message or f"Session {session_id!r} is detached")
        self.session_id = session_id


class CommandCancelledError(DispatchError):
    """The command was cancelled locally before its response arrived."""

    def __init__(self, command_id: int, reason: str | None = None) -> None:
        super().__init__(f"Command {command_id} cancelled: {reason or 'no reason given'}")
        self.command_id = command_id
        self.reason = reason


class CommandTimeoutError(DispatchError):
    """The command's deadline elapsed with no response."""

    def __init__(self, command_id: int, method: str, timeout: float) -> None:
        super().__init__(f"Command {command_id} ({method}) timed out after {timeout}s")
        self.command_id = command_id
        self.method = method
        self.timeout = timeout


class DuplicateSessionError(DispatchError):
    """A session with this id is already attached."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id!r} is already attached")
        self.session_id = session_id


class ConnectionClosedError(DispatchError):
    """The transport connection was torn down."""

    def __init__(self, reason: str = "Connection closed") -> None:
        super().__init__(reason)
        self.reason = reason
