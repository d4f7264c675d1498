"""Dispatcher - the composition root of one protocol connection.

Owns the codec, the pending-command table, the session registry and the event
router for exactly one transport connection, and tears all of them down
together when the connection closes.

Data flow:
    send() -> pending.register() -> codec.encode() -> transport.write()
    transport.frames() -> codec.decode() -> response: pending.resolve()/reject()
                                         -> event:    router.dispatch()

Everything runs on one event loop. The read loop processes frames strictly in
arrival order; callers awaiting send() suspend on their command's future and
never block it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .anomalies import AnomalyKind, AnomalyLog
from .config import DEFAULT_HTTP_ENDPOINT, DEFAULT_TIMEOUT, DispatcherConfig, TransportConfig
from .errors import (
    CommandCancelledError,
    ConnectionClosedError,
    DispatchError,
    DuplicateSessionError,
    MalformedMessageError,
    ProtocolError,
    SessionDetachedError,
)
from .pending import CommandStatus, PendingCommandTable, PendingEntry
from .protocol.codec import MessageCodec
from .protocol.commands import ROOT_SESSION_ID, Command
from .protocol.messages import EventEnvelope, ResponseEnvelope, split_method
from .protocol.schema import SchemaTable, Stability, default_schema
from .router import EventHandler, EventRouter, Subscription
from .sessions import Session, SessionRegistry, SessionState
from .transport.base import Transport

if TYPE_CHECKING:
    from .domains import SessionHandle

logger = logging.getLogger(__name__)


class CommandHandle:
    """Awaitable handle for an issued command.

    Usage:
        handle = await dispatcher.issue(session_id, "Page", "navigate", {"url": url})
        ...
        handle.cancel("user navigated away")  # optional
        result = await handle
    """

    def __init__(self, entry: PendingEntry, table: PendingCommandTable) -> None:
        self._entry = entry
        self._table = table

    @property
    def id(self) -> int:
        return self._entry.id

    @property
    def command(self) -> Command:
        return self._entry.command

    @property
    def status(self) -> CommandStatus:
        return self._entry.status

    def done(self) -> bool:
        return self._entry.done

    def cancel(self, reason: str | None = None) -> bool:
        """Cancel locally. Returns False if the command already completed."""
        if self._table.get(self.id) is not self._entry:
            return False
        return self._table.cancel(self.id, reason)

    async def result(self) -> dict[str, Any]:
        """Wait for the command's result.

        If the awaiting task is cancelled, the command is cancelled locally
        and asyncio.CancelledError propagates.
        """
        future = self._entry.future
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            if not future.done():
                self.cancel("awaiting task cancelled")
            if future.done() and not future.cancelled():
                future.exception()  # mark retrieved
            raise

    def __await__(self) -> Any:
        return self.result().__await__()

    def __repr__(self) -> str:
        return f"CommandHandle(id={self.id}, method={self.command.qualified_name}, status={self.status.value})"


class Dispatcher:
    """Session-multiplexed command/event dispatcher over one transport.

    Usage:
        async with Dispatcher(WebSocketTransport(url)) as dispatcher:
            session_id = await dispatcher.attach(target_id)
            await dispatcher.send(session_id, "Page", "enable")
            dispatcher.subscribe(session_id, "Page", "loadEventFired", on_load)
            result = await dispatcher.send(
                session_id, "Page", "navigate", {"url": "https://example.com"}
            )
            await dispatcher.detach(session_id)
    """

    def __init__(
        self,
        transport: Transport,
        config: DispatcherConfig | None = None,
        schema: SchemaTable | None = None,
    ) -> None:
        self.transport = transport
        self.config = config or DispatcherConfig()
        self.schema = schema or default_schema()

        self.anomalies = AnomalyLog(self.config.anomaly_log_size)
        self.codec = MessageCodec()
        self.pending = PendingCommandTable(self.anomalies, max_id=self.config.max_command_id)
        self.sessions = SessionRegistry(self.pending, retention=self.config.detached_retention)
        self.router = EventRouter(self.anomalies)
        self.sessions.on_close(self._on_session_closed)

        self._reader_task: asyncio.Task[None] | None = None
        self._sweeper_task: asyncio.Task[None] | None = None
        self._started = False
        self._closed = False
        self._close_reason: str | None = None
        self._closed_event = asyncio.Event()
        self._deadline_added = asyncio.Event()

        # target id -> number of attach() calls in flight for it
        self._attaching: dict[str, int] = {}
        self._waiters: dict[str, set[asyncio.Future[dict[str, Any]]]] = {}
        self._warned_deprecated: set[str] = set()

    # =========================================================================
    # Construction helpers
    # =========================================================================

    @classmethod
    async def connect(
        cls,
        websocket_url: str,
        config: DispatcherConfig | None = None,
        transport_config: TransportConfig | None = None,
    ) -> Dispatcher:
        """Open a WebSocket connection and start a dispatcher on it."""
        from .transport.websocket import WebSocketTransport

        dispatcher = cls(WebSocketTransport(websocket_url, transport_config), config)
        await dispatcher.start()
        return dispatcher

    @classmethod
    async def connect_to_browser(
        cls,
        endpoint: str = DEFAULT_HTTP_ENDPOINT,
        config: DispatcherConfig | None = None,
        transport_config: TransportConfig | None = None,
    ) -> Dispatcher:
        """Resolve the browser's WebSocket URL over HTTP, then connect."""
        from .discovery import BrowserEndpoint

        async with BrowserEndpoint(endpoint) as browser:
            websocket_url = await browser.websocket_url()
        return await cls.connect(websocket_url, config, transport_config)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Connect the transport and start the read loop and timeout sweep."""
        if self._closed:
            raise ConnectionClosedError(self._close_reason or "Dispatcher is closed")
        if self._started:
            return
        await self.transport.connect()
        self._started = True
        self._reader_task = asyncio.create_task(self._read_loop())
        self._sweeper_task = asyncio.create_task(self._sweep_loop())
        logger.info("Dispatcher started")

    async def close(self, reason: str = "Dispatcher closed") -> None:
        """Tear down the connection.

        Every pending command fails with ConnectionClosedError and every
        session is marked detached. Safe to call more than once.
        """
        if self._closed:
            return
        current = asyncio.current_task()
        for task in (self._sweeper_task, self._reader_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        try:
            await self.transport.close()
        except Exception as e:
            logger.warning(f"Error closing transport: {e}")
        self._teardown(reason)

    async def wait_closed(self) -> None:
        """Wait until the connection has been torn down."""
        await self._closed_event.wait()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def close_reason(self) -> str | None:
        return self._close_reason

    @property
    def is_running(self) -> bool:
        return self._started and not self._closed

    @property
    def pending_count(self) -> int:
        return len(self.pending)

    def _teardown(self, reason: str) -> None:
        if self._closed:
            return
        self._closed = True
        self._close_reason = reason

        if self._sweeper_task is not None and not self._sweeper_task.done():
            self._sweeper_task.cancel()

        cancelled = self.pending.cancel_all(lambda: ConnectionClosedError(reason))
        for futures in self._waiters.values():
            for future in futures:
                if not future.done():
                    future.set_exception(ConnectionClosedError(reason))
        self._waiters.clear()
        self.sessions.close_all(reason)
        self.router.clear()
        self.router.cancel_tasks()
        self._closed_event.set()
        logger.info(f"Dispatcher closed ({reason}); {cancelled} pending command(s) failed")

    async def __aenter__(self) -> Dispatcher:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # =========================================================================
    # Commands
    # =========================================================================

    async def issue(
        self,
        session_id: str,
        domain: str,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = DEFAULT_TIMEOUT,
    ) -> CommandHandle:
        """Register and write a command without waiting for its response.

        Args:
            session_id: Target session ("" for the root session)
            domain: Domain name, e.g. "Page"
            method: Method name within the domain, e.g. "navigate"
            params: Opaque parameters
            timeout: Deadline in seconds; None for no deadline; omitted to
                use DispatcherConfig.command_timeout

        Returns:
            A handle that completes when the response arrives or the
            command is cancelled, times out or its session detaches

        Raises:
            ConnectionClosedError: If the dispatcher is not running
            SessionDetachedError: If the session is not active (no id is
                allocated and nothing is written)
        """
        self._ensure_running()
        if not self.sessions.is_active(session_id):
            session = self.sessions.get(session_id)
            state = session.state.value if session else "unknown"
            raise SessionDetachedError(
                session_id, f"Session {session_id!r} is not active ({state})"
            )

        if timeout is DEFAULT_TIMEOUT:
            timeout = self.config.command_timeout

        command = Command.create(domain, method, params, session_id)
        self._check_stability(command)
        entry = self.pending.register(command, timeout=timeout)
        if timeout is not None:
            self._deadline_added.set()
        handle = CommandHandle(entry, self.pending)

        if self.config.flatten or command.is_root:
            frame = self.codec.encode_command(command)
            try:
                await self.transport.write(frame)
            except asyncio.CancelledError:
                self._fail_unsent(entry, CommandCancelledError(entry.id, "issuing task cancelled"))
                raise
            except ConnectionClosedError as e:
                self._fail_unsent(entry, e)
            except Exception as e:
                self._fail_unsent(entry, ConnectionClosedError(f"Write failed: {e}"))
        else:
            await self._issue_wrapped(entry)
        return handle

    async def send(
        self,
        session_id: str,
        domain: str,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = DEFAULT_TIMEOUT,
    ) -> dict[str, Any]:
        """Send a command and wait for its result.

        Raises:
            ProtocolError: The remote side answered with an error
            SessionDetachedError: The session is not active, or detached
                before the response arrived
            CommandCancelledError: The command was cancelled locally
            CommandTimeoutError: The deadline elapsed
            ConnectionClosedError: The connection closed
        """
        handle = await self.issue(session_id, domain, method, params, timeout)
        return await handle

    async def call(
        self,
        session_id: str,
        qualified_method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = DEFAULT_TIMEOUT,
    ) -> dict[str, Any]:
        """send() taking a flattened `<Domain>.<method>` name."""
        domain, method = split_method(qualified_method)
        return await self.send(session_id, domain, method, params, timeout)

    def cancel(self, command_id: int, reason: str | None = None) -> bool:
        """Cancel a pending command by id."""
        return self.pending.cancel(command_id, reason)

    async def _issue_wrapped(self, entry: PendingEntry) -> None:
        """Send a child-session command wrapped in Target.sendMessageToTarget."""
        command = entry.command
        session = self.sessions.get(command.session_id)
        parent_id = session.parent_session_id if session else None
        inner = self.codec.encode(None, entry.id, command.domain, command.method, command.params)
        wrapper = Command.send_message_to_target(
            command.session_id, inner, parent_id or ROOT_SESSION_ID
        )
        try:
            outer = await self.issue(
                wrapper.session_id, wrapper.domain, wrapper.method, wrapper.params, timeout=None
            )
        except DispatchError as e:
            self._fail_unsent(entry, e)
            return

        def relay_failure(future: asyncio.Future[dict[str, Any]]) -> None:
            if future.cancelled():
                return
            error = future.exception()
            if error is not None and self.pending.get(entry.id) is entry:
                self.pending.reject(entry.id, error)

        outer._entry.future.add_done_callback(relay_failure)

    def _fail_unsent(self, entry: PendingEntry, error: Exception) -> None:
        logger.warning(f"Could not write command {entry.id} ({entry.command.qualified_name}): {error}")
        if self.pending.get(entry.id) is entry:
            self.pending.cancel(entry.id, error=error)

    def _ensure_running(self) -> None:
        if self._closed:
            raise ConnectionClosedError(self._close_reason or "Dispatcher is closed")
        if not self._started:
            raise ConnectionClosedError("Dispatcher is not started")

    def _check_stability(self, command: Command) -> None:
        stability = self.schema.stability(command.domain, command.method)
        name = command.qualified_name
        if stability == Stability.DEPRECATED:
            if self.config.warn_on_deprecated and name not in self._warned_deprecated:
                self._warned_deprecated.add(name)
                logger.warning(f"{name} is deprecated and may be removed by the remote engine")
        elif stability == Stability.EXPERIMENTAL:
            logger.debug(f"{name} is experimental")

    # =========================================================================
    # Sessions
    # =========================================================================

    async def attach(
        self,
        target_id: str,
        parent_session_id: str = ROOT_SESSION_ID,
        timeout: float | None = DEFAULT_TIMEOUT,
    ) -> str:
        """Attach to a target and open a session for it.

        Returns:
            The new session id reported by the remote side
        """
        command = Command.attach_to_target(target_id, flatten=self.config.flatten)
        self._attaching[target_id] = self._attaching.get(target_id, 0) + 1
        try:
            result = await self.send(
                parent_session_id, command.domain, command.method, command.params, timeout
            )
        except BaseException:
            self._abandon_attaching(target_id, parent_session_id)
            raise
        finally:
            remaining = self._attaching.get(target_id, 1) - 1
            if remaining > 0:
                self._attaching[target_id] = remaining
            else:
                self._attaching.pop(target_id, None)

        session_id = result.get("sessionId")
        if not isinstance(session_id, str) or not session_id:
            raise ProtocolError(
                None,
                "attachToTarget result has no sessionId",
                data=result,
                method=command.qualified_name,
            )

        session = self.sessions.get(session_id)
        if session is None:
            self.sessions.open_session(session_id, target_id, parent_session_id)
        elif session.is_detached:
            raise SessionDetachedError(session_id, f"Session {session_id!r} detached while attaching")
        else:
            self.sessions.activate(session_id)
        return session_id

    def _abandon_attaching(self, target_id: str, parent_session_id: str) -> None:
        for session in self.sessions.sessions_for_target(target_id):
            if (
                session.state == SessionState.ATTACHING
                and session.parent_session_id == parent_session_id
            ):
                self.sessions.close_session(session.session_id, reason="attach failed")

    async def detach(
        self,
        session_id: str,
        timeout: float | None = DEFAULT_TIMEOUT,
    ) -> bool:
        """Detach a session: best-effort on the wire, always locally.

        Returns:
            False if the session was unknown or already detached

        Raises:
            ValueError: For the root session
        """
        if session_id == ROOT_SESSION_ID:
            raise ValueError("The root session cannot be detached; close the dispatcher instead")
        session = self.sessions.get(session_id)
        if session is None or session.is_detached:
            return False

        parent_id = session.parent_session_id or ROOT_SESSION_ID
        command = Command.detach_from_target(session_id, parent_id)
        try:
            if self.is_running and self.sessions.is_active(parent_id):
                await self.send(parent_id, command.domain, command.method, command.params, timeout)
        except DispatchError as e:
            logger.warning(f"Detach command for session {session_id} failed: {e}")
        finally:
            self.sessions.close_session(session_id, reason="detached")
        return True

    def session(self, session_id: str) -> SessionHandle:
        """Handle with domain proxies for one session."""
        from .domains import SessionHandle

        return SessionHandle(self, session_id)

    @property
    def root(self) -> SessionHandle:
        """Handle for the root (browser) session."""
        return self.session(ROOT_SESSION_ID)

    def _on_session_closed(self, session: Session) -> None:
        self.router.unsubscribe_session(session.session_id)
        for future in self._waiters.pop(session.session_id, set()):
            if not future.done():
                future.set_exception(SessionDetachedError(session.session_id))

    # =========================================================================
    # Events
    # =========================================================================

    def subscribe(
        self,
        session_id: str,
        domain: str,
        event: str,
        handler: EventHandler,
    ) -> Subscription:
        """Register a handler for one event of one session.

        Raises:
            SessionDetachedError: If the session is unknown or detached
        """
        if not self.sessions.is_routable(session_id):
            raise SessionDetachedError(session_id)
        return self.router.subscribe(session_id, domain, event, handler)

    def on(self, session_id: str, qualified_event: str, handler: EventHandler) -> Subscription:
        """subscribe() taking a flattened `<Domain>.<event>` name."""
        domain, event = split_method(qualified_event)
        return self.subscribe(session_id, domain, event, handler)

    def unsubscribe(self, subscription: Subscription) -> bool:
        return self.router.unsubscribe(subscription)

    async def wait_for(
        self,
        session_id: str,
        domain: str,
        event: str,
        timeout: float | None = None,
        predicate: Callable[[dict[str, Any]], bool] | None = None,
    ) -> dict[str, Any]:
        """Wait for the next matching event and return its params.

        Raises:
            TimeoutError: If no matching event arrives within `timeout`
            SessionDetachedError: If the session detaches first
            ConnectionClosedError: If the connection closes first
        """
        self._ensure_running()
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()

        def handler(payload: dict[str, Any]) -> None:
            if future.done():
                return
            if predicate is None or predicate(payload):
                future.set_result(payload)

        subscription = self.subscribe(session_id, domain, event, handler)
        waiters = self._waiters.setdefault(session_id, set())
        waiters.add(future)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            self.router.unsubscribe(subscription)
            waiters.discard(future)
            if not waiters and self._waiters.get(session_id) is waiters:
                del self._waiters[session_id]

    # =========================================================================
    # Read side
    # =========================================================================

    async def _read_loop(self) -> None:
        """Consume inbound frames in arrival order until the transport closes."""
        reason = "Connection closed by remote"
        try:
            async for frame in self.transport.frames():
                try:
                    self._handle_frame(frame)
                except Exception:
                    logger.exception("Unexpected error while handling frame")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Read loop error: {e}")
            reason = f"Transport error: {e}"

        if not self._closed:
            self._teardown(reason)
            with contextlib.suppress(Exception):
                await self.transport.close()

    async def _sweep_loop(self) -> None:
        """Expire commands whose deadline elapsed.

        Idles until a command with a deadline is registered, then wakes at
        most every `sweep_interval` seconds while deadlines remain.
        """
        loop = asyncio.get_running_loop()
        while True:
            deadline = self.pending.next_deadline()
            if deadline is None:
                self._deadline_added.clear()
                await self._deadline_added.wait()
                continue
            delay = min(self.config.sweep_interval, deadline - loop.time())
            await asyncio.sleep(max(delay, 0))
            try:
                self.pending.timeout_sweep(loop.time())
            except Exception:
                logger.exception("Error in timeout sweep")

    def _handle_frame(self, frame: str | bytes, session_override: str | None = None) -> None:
        logger.debug(f"< {frame[:300]!r}")
        try:
            message = self.codec.decode(frame)
        except MalformedMessageError as e:
            self.anomalies.record(AnomalyKind.MALFORMED_FRAME, f"{e} (frame: {e.frame!r})")
            return

        if isinstance(message, ResponseEnvelope):
            self._handle_response(message)
        else:
            self._handle_event(message, session_override)

    def _handle_response(self, response: ResponseEnvelope) -> None:
        if response.is_error:
            entry = self.pending.get(response.id)
            method = entry.command.qualified_name if entry else None
            self.pending.reject(response.id, response.to_exception(method))
        else:
            self.pending.resolve(response.id, response.result or {})

    def _handle_event(self, event: EventEnvelope, session_override: str | None = None) -> None:
        if session_override is not None:
            session_id = session_override
        else:
            session_id = event.session_id or ROOT_SESSION_ID
        if not self.sessions.is_routable(session_id):
            state = "detached" if session_id in self.sessions else "unknown"
            self.anomalies.record(
                AnomalyKind.UNKNOWN_SESSION,
                f"{event.method} for {state} session {session_id!r}",
                session_id=session_id,
            )
            return

        domain, name = event.domain, event.event
        if domain == "Target":
            self._track_target_event(session_id, name, event.params)
        self.router.dispatch(session_id, domain, name, event.params)

    def _track_target_event(self, session_id: str, name: str, params: dict[str, Any]) -> None:
        """Keep the session registry in step with Target lifecycle events."""
        if name == "attachedToTarget":
            child_id = params.get("sessionId")
            target_info = params.get("targetInfo") or {}
            target_id = target_info.get("targetId", "")
            if not child_id:
                return
            attaching = target_id in self._attaching
            if not (attaching or self.config.auto_attach_sessions):
                return
            state = SessionState.ATTACHING if attaching else SessionState.ACTIVE
            try:
                self.sessions.open_session(child_id, target_id, session_id, state)
            except DuplicateSessionError:
                logger.debug(f"Session {child_id} already registered")

        elif name == "detachedFromTarget":
            child_id = params.get("sessionId")
            if child_id:
                self.sessions.close_session(child_id, reason="detached by remote")
                return
            target_id = params.get("targetId")
            for session in self.sessions.sessions_for_target(target_id or ""):
                if session.parent_session_id == session_id:
                    self.sessions.close_session(session.session_id, reason="detached by remote")

        elif name == "targetDestroyed":
            target_id = params.get("targetId", "")
            for session in self.sessions.sessions_for_target(target_id):
                self.sessions.close_session(session.session_id, reason="target destroyed")

        elif name == "receivedMessageFromTarget":
            child_id = params.get("sessionId")
            if not child_id:
                sessions = self.sessions.sessions_for_target(params.get("targetId", ""))
                child_id = sessions[0].session_id if sessions else None
            message = params.get("message")
            if child_id and isinstance(message, str):
                self._handle_frame(message, session_override=child_id)
