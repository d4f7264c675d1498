"""Session registry.

Tracks the attached sessions of one connection as a tree: the root session
(the browser connection itself, id "") and one child per attached target,
which may in turn have children of its own.

Invariant: once a session is detached, no command addressed to it ever
resolves successfully. Closing a session fails every pending command for it,
and for every descendant, with SessionDetachedError.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from .errors import DuplicateSessionError, SessionDetachedError
from .pending import PendingCommandTable
from .protocol.commands import ROOT_SESSION_ID

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Session lifecycle states."""

    ATTACHING = "attaching"  # announced by the remote, attach call not finished
    ACTIVE = "active"
    DETACHED = "detached"  # terminal


@dataclass
class Session:
    """An attachment to one remote target."""

    session_id: str
    target_id: str
    parent_session_id: str | None = None
    state: SessionState = SessionState.ACTIVE
    attached_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    detached_at: datetime | None = None
    detach_reason: str | None = None
    children: list[str] = field(default_factory=list)

    @property
    def is_root(self) -> bool:
        return self.session_id == ROOT_SESSION_ID

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.ACTIVE

    @property
    def is_detached(self) -> bool:
        return self.state == SessionState.DETACHED


SessionListener = Callable[[Session], None]


class SessionRegistry:
    """All sessions of one connection.

    The root session is created active with the registry and lives until
    close_all().
    """

    def __init__(self, pending: PendingCommandTable, retention: int = 128) -> None:
        self._pending = pending
        self._sessions: dict[str, Session] = {}
        self._retired: deque[str] = deque()
        self._retention = retention
        self._close_listeners: list[SessionListener] = []
        self._sessions[ROOT_SESSION_ID] = Session(session_id=ROOT_SESSION_ID, target_id="")

    @property
    def root(self) -> Session:
        return self._sessions[ROOT_SESSION_ID]

    def on_close(self, listener: SessionListener) -> None:
        """Register a callback invoked for every session that gets detached."""
        self._close_listeners.append(listener)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def open_session(
        self,
        session_id: str,
        target_id: str,
        parent_session_id: str = ROOT_SESSION_ID,
        state: SessionState = SessionState.ACTIVE,
    ) -> Session:
        """Create a session under a parent.

        Raises:
            DuplicateSessionError: If the id is taken by a session that is not detached
            SessionDetachedError: If the parent is unknown or detached
        """
        if state == SessionState.DETACHED:
            raise ValueError("Cannot open a session in the detached state")
        if not session_id:
            raise DuplicateSessionError(session_id)

        existing = self._sessions.get(session_id)
        if existing is not None and not existing.is_detached:
            raise DuplicateSessionError(session_id)

        parent = self._sessions.get(parent_session_id)
        if parent is None or parent.is_detached:
            raise SessionDetachedError(
                parent_session_id,
                f"Cannot open session {session_id!r}: parent {parent_session_id!r} is not attached",
            )

        if existing is not None:
            self._forget(session_id)

        session = Session(
            session_id=session_id,
            target_id=target_id,
            parent_session_id=parent_session_id,
            state=state,
        )
        self._sessions[session_id] = session
        parent.children.append(session_id)
        logger.info(
            f"Session {session_id} opened for target {target_id} "
            f"(parent={parent_session_id or 'root'}, state={state.value})"
        )
        return session

    def activate(self, session_id: str) -> Session:
        """Move an attaching session to active.

        Raises:
            SessionDetachedError: If the session is unknown or detached
        """
        session = self._sessions.get(session_id)
        if session is None or session.is_detached:
            raise SessionDetachedError(session_id)
        if session.state == SessionState.ATTACHING:
            session.state = SessionState.ACTIVE
            logger.debug(f"Session {session_id} is now active")
        return session

    def close_session(self, session_id: str, reason: str = "detached") -> list[Session]:
        """Detach a session and all of its descendants.

        Every pending command addressed to a closed session fails with
        SessionDetachedError.

        Returns:
            The sessions that were closed by this call (empty if the session
            was unknown or already detached)
        """
        session = self._sessions.get(session_id)
        if session is None or session.is_detached:
            return []

        closed = [s for s in self._walk(session) if not s.is_detached]
        now = datetime.now(UTC)
        for s in closed:
            s.state = SessionState.DETACHED
            s.detached_at = now
            s.detach_reason = reason

        for s in closed:
            cancelled = self._pending.cancel_session(
                s.session_id, lambda sid=s.session_id: SessionDetachedError(sid)
            )
            logger.info(
                f"Session {s.session_id or 'root'} detached ({reason}); "
                f"{cancelled} pending command(s) failed"
            )
            self._notify_closed(s)

        for s in closed:
            self._retire(s.session_id)
        return closed

    def close_all(self, reason: str = "connection closed") -> list[Session]:
        """Mark every session detached without touching pending commands.

        Used on connection teardown, where the pending table is cancelled
        separately with ConnectionClosedError.
        """
        now = datetime.now(UTC)
        closed = [s for s in self._sessions.values() if not s.is_detached]
        for s in closed:
            s.state = SessionState.DETACHED
            s.detached_at = now
            s.detach_reason = reason
        for s in closed:
            self._notify_closed(s)
        return closed

    def _walk(self, session: Session) -> Iterator[Session]:
        """The session followed by all of its descendants, depth first."""
        yield session
        for child_id in list(session.children):
            child = self._sessions.get(child_id)
            if child is not None:
                yield from self._walk(child)

    def _notify_closed(self, session: Session) -> None:
        for listener in self._close_listeners:
            try:
                listener(session)
            except Exception:
                logger.exception(f"Error in close listener for session {session.session_id}")

    def _retire(self, session_id: str) -> None:
        """Keep detached sessions around for lookups, up to the retention limit."""
        if session_id == ROOT_SESSION_ID:
            return
        self._retired.append(session_id)
        while len(self._retired) > self._retention:
            oldest = self._retired.popleft()
            session = self._sessions.get(oldest)
            if session is not None and session.is_detached:
                self._forget(oldest)

    def _forget(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        if session_id in self._retired:
            self._retired.remove(session_id)
        parent = self._sessions.get(session.parent_session_id or ROOT_SESSION_ID)
        if parent is not None and session_id in parent.children:
            parent.children.remove(session_id)

    # =========================================================================
    # Lookups
    # =========================================================================

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def is_active(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        return session is not None and session.is_active

    def is_routable(self, session_id: str) -> bool:
        """Whether inbound traffic for this session should be delivered."""
        session = self._sessions.get(session_id)
        return session is not None and not session.is_detached

    def sessions_for_target(self, target_id: str) -> list[Session]:
        """Attached (not detached) sessions for a target."""
        return [
            s
            for s in self._sessions.values()
            if s.target_id == target_id and not s.is_detached and not s.is_root
        ]

    def children_of(self, session_id: str) -> list[Session]:
        session = self._sessions.get(session_id)
        if session is None:
            return []
        return [self._sessions[c] for c in session.children if c in self._sessions]

    def active_sessions(self) -> list[Session]:
        return [s for s in self._sessions.values() if s.is_active]

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def __len__(self) -> int:
        return len(self._sessions)
