"""Pending-command table.

Tracks in-flight commands by correlation id and completes each one exactly
once: resolved, rejected, cancelled or timed out. Responses are matched by id
only, never by arrival order.

The table is private to one dispatcher and is only touched from the event
loop thread, so it holds no locks.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .anomalies import AnomalyKind, AnomalyLog
from .errors import CommandCancelledError, CommandTimeoutError
from .protocol.commands import Command

logger = logging.getLogger(__name__)

# How many retired ids to remember for stray-response diagnostics
_RETIRED_MEMORY = 64


class CommandStatus(str, Enum):
    """Lifecycle of a pending entry."""

    PENDING = "pending"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass
class PendingEntry:
    """A command waiting for its response."""

    command: Command
    future: asyncio.Future[dict[str, Any]]
    timeout: float | None = None
    deadline: float | None = None
    status: CommandStatus = CommandStatus.PENDING
    outcome: Any = None
    on_complete: list[Callable[[PendingEntry], None]] = field(default_factory=list)

    @property
    def id(self) -> int:
        if self.command.id is None:
            raise RuntimeError(f"Command {self.command.qualified_name} was never registered")
        return self.command.id

    @property
    def session_id(self) -> str:
        return self.command.session_id

    @property
    def done(self) -> bool:
        return self.status != CommandStatus.PENDING


class PendingCommandTable:
    """In-flight commands keyed by correlation id.

    Usage:
        table = PendingCommandTable()
        entry = table.register(Command.create("Page", "navigate", {"url": url}))
        ...  # write the frame
        table.resolve(entry.id, {"frameId": "F1"})
        result = await entry.future
    """

    def __init__(
        self,
        anomalies: AnomalyLog | None = None,
        max_id: int = 2**31 - 1,
    ) -> None:
        if max_id < 1:
            raise ValueError("max_id must be positive")
        self._entries: dict[int, PendingEntry] = {}
        self._retired: OrderedDict[int, CommandStatus] = OrderedDict()
        self._anomalies = anomalies if anomalies is not None else AnomalyLog()
        self._max_id = max_id
        self._last_id = 0

    # =========================================================================
    # Registration
    # =========================================================================

    def register(
        self,
        command: Command,
        timeout: float | None = None,
        on_complete: Callable[[PendingEntry], None] | None = None,
    ) -> PendingEntry:
        """Allocate an id for the command and store a pending entry.

        Must be called from a running event loop.

        Args:
            command: The command to track; its `id` is assigned here
            timeout: Optional deadline in seconds, enforced by timeout_sweep()
            on_complete: Called once with the entry when it leaves the table

        Returns:
            The pending entry; await `entry.future` for the result
        """
        loop = asyncio.get_running_loop()
        command.id = self._allocate_id()
        entry = PendingEntry(
            command=command,
            future=loop.create_future(),
            timeout=timeout,
            deadline=loop.time() + timeout if timeout is not None else None,
        )
        if on_complete is not None:
            entry.on_complete.append(on_complete)
        entry.future.add_done_callback(lambda _: self._future_done(entry))
        self._entries[entry.id] = entry
        self._retired.pop(entry.id, None)
        logger.debug(f"Registered command {entry.id} ({command.qualified_name})")
        return entry

    def _allocate_id(self) -> int:
        """Next id after the last one issued, skipping ids still pending."""
        if len(self._entries) >= self._max_id:
            raise RuntimeError("Correlation id space exhausted")
        while True:
            self._last_id = self._last_id + 1 if self._last_id < self._max_id else 1
            if self._last_id not in self._entries:
                return self._last_id

    # =========================================================================
    # Completion
    # =========================================================================

    def resolve(self, command_id: int, result: dict[str, Any]) -> bool:
        """Complete a pending command successfully.

        Returns:
            False (and records a stray-response anomaly) if nothing is pending
            under this id
        """
        entry = self._entries.get(command_id)
        if entry is None:
            self._record_stray(command_id, "result")
            return False
        self._complete(entry, CommandStatus.RESOLVED, result)
        return True

    def reject(self, command_id: int, error: Exception) -> bool:
        """Complete a pending command with an error from the remote side."""
        entry = self._entries.get(command_id)
        if entry is None:
            self._record_stray(command_id, "error")
            return False
        self._complete(entry, CommandStatus.REJECTED, error)
        return True

    def cancel(
        self,
        command_id: int,
        reason: str | None = None,
        error: Exception | None = None,
    ) -> bool:
        """Cancel a still-pending command locally.

        The remote side may still act on it; a response arriving later is
        treated as a stray response.

        Args:
            command_id: Id of the command
            reason: Human-readable reason, used for the default error
            error: Error to complete with instead of CommandCancelledError

        Returns:
            False if the command was not pending
        """
        entry = self._entries.get(command_id)
        if entry is None:
            return False
        self._complete(
            entry,
            CommandStatus.CANCELLED,
            error or CommandCancelledError(command_id, reason),
        )
        return True

    def timeout_sweep(self, now: float | None = None) -> list[PendingEntry]:
        """Reject every entry whose deadline has elapsed.

        Args:
            now: Event-loop time to compare deadlines against (default: now)

        Returns:
            The entries that timed out
        """
        if now is None:
            now = asyncio.get_running_loop().time()
        expired = [
            entry
            for entry in self._entries.values()
            if entry.deadline is not None and entry.deadline <= now
        ]
        for entry in expired:
            timeout = entry.timeout if entry.timeout is not None else 0.0
            logger.info(f"Command {entry.id} ({entry.command.qualified_name}) timed out")
            self._complete(
                entry,
                CommandStatus.TIMED_OUT,
                CommandTimeoutError(entry.id, entry.command.qualified_name, timeout),
            )
        return expired

    def cancel_session(self, session_id: str, error_factory: Callable[[], Exception]) -> int:
        """Cancel every pending command addressed to one session.

        Returns:
            Number of commands cancelled
        """
        ids = [e.id for e in self._entries.values() if e.session_id == session_id]
        for command_id in ids:
            self.cancel(command_id, error=error_factory())
        return len(ids)

    def cancel_all(self, error_factory: Callable[[], Exception]) -> int:
        """Cancel every pending command (connection teardown)."""
        ids = list(self._entries)
        for command_id in ids:
            self.cancel(command_id, error=error_factory())
        return len(ids)

    def _complete(self, entry: PendingEntry, status: CommandStatus, outcome: Any) -> None:
        del self._entries[entry.id]
        self._retired[entry.id] = status
        while len(self._retired) > _RETIRED_MEMORY:
            self._retired.popitem(last=False)

        entry.status = status
        entry.outcome = outcome
        if not entry.future.done():
            if isinstance(outcome, BaseException):
                entry.future.set_exception(outcome)
            else:
                entry.future.set_result(outcome)

        for callback in entry.on_complete:
            try:
                callback(entry)
            except Exception:
                logger.exception(f"Error in completion callback for command {entry.id}")

    def _future_done(self, entry: PendingEntry) -> None:
        """Retire the entry if its future was cancelled from outside."""
        if entry.future.cancelled() and self._entries.get(entry.id) is entry:
            self.cancel(entry.id, reason="awaiting task cancelled")

    def _record_stray(self, command_id: int, kind: str) -> None:
        previous = self._retired.get(command_id)
        if previous is not None:
            detail = f"Late {kind} for command {command_id} (already {previous.value})"
        else:
            detail = f"Unexpected {kind} for command {command_id} (never issued)"
        self._anomalies.record(AnomalyKind.STRAY_RESPONSE, detail, command_id=command_id)

    # =========================================================================
    # Lookups
    # =========================================================================

    def get(self, command_id: int) -> PendingEntry | None:
        return self._entries.get(command_id)

    def pending_ids(self) -> list[int]:
        return list(self._entries)

    def next_deadline(self) -> float | None:
        """Earliest deadline among pending entries, if any."""
        deadlines = [e.deadline for e in self._entries.values() if e.deadline is not None]
        return min(deadlines) if deadlines else None

    @property
    def anomalies(self) -> AnomalyLog:
        return self._anomalies

    def __contains__(self, command_id: object) -> bool:
        return command_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
