"""In-memory transport for tests and embedding.

No I/O: frames written by the dispatcher are recorded, and inbound frames are
fed by the test (or computed by an optional responder).
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

from ..config import TransportConfig
from ..errors import ConnectionClosedError
from .base import BaseTransport

logger = logging.getLogger(__name__)

# Receives each decoded outbound message; returns frames to deliver back
Responder = Callable[[dict[str, Any]], dict[str, Any] | list[dict[str, Any]] | None]


class MemoryTransport(BaseTransport):
    """Transport backed by an in-memory queue.

    Usage:
        transport = MemoryTransport()
        dispatcher = Dispatcher(transport)
        await dispatcher.start()

        handle = await dispatcher.issue("", "Page", "navigate", {"url": url})
        transport.respond(handle.id, {"frameId": "F1"})
        assert await handle == {"frameId": "F1"}

        assert transport.written[-1]["method"] == "Page.navigate"
    """

    def __init__(
        self,
        responder: Responder | None = None,
        config: TransportConfig | None = None,
    ) -> None:
        super().__init__(config)
        self.responder = responder
        self.sent_frames: list[str] = []
        self.write_error: Exception | None = None
        self._inbound: asyncio.Queue[str | bytes | None] = asyncio.Queue()

    @property
    def written(self) -> list[dict[str, Any]]:
        """Decoded JSON of every frame written so far."""
        return [json.loads(frame) for frame in self.sent_frames]

    def written_methods(self) -> list[str]:
        return [m.get("method", "") for m in self.written]

    # =========================================================================
    # Feeding inbound traffic
    # =========================================================================

    def feed(self, frame: str | bytes | dict[str, Any]) -> None:
        """Queue one inbound frame (dicts are JSON-encoded)."""
        if isinstance(frame, dict):
            frame = json.dumps(frame)
        self._inbound.put_nowait(frame)

    def respond(
        self,
        command_id: int,
        result: dict[str, Any] | None = None,
        error: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> None:
        """Queue a response frame for a command id."""
        message: dict[str, Any] = {"id": command_id}
        if error is not None:
            message["error"] = error
        else:
            message["result"] = result if result is not None else {}
        if session_id:
            message["sessionId"] = session_id
        self.feed(message)

    def emit(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> None:
        """Queue an event frame."""
        message: dict[str, Any] = {"method": method, "params": params or {}}
        if session_id:
            message["sessionId"] = session_id
        self.feed(message)

    def close_remote(self) -> None:
        """Simulate the remote side closing the connection."""
        self._inbound.put_nowait(None)

    # =========================================================================
    # BaseTransport implementation
    # =========================================================================

    async def _do_connect(self) -> None:
        """No-op for memory transport."""
        pass

    async def _do_close(self) -> None:
        self._inbound.put_nowait(None)

    async def _do_write(self, frame: str) -> None:
        if self.write_error is not None:
            raise self.write_error
        if not self.is_connected:
            raise ConnectionClosedError("Memory transport closed")
        self.sent_frames.append(frame)

        if self.responder is not None:
            replies = self.responder(json.loads(frame))
            if isinstance(replies, dict):
                replies = [replies]
            for reply in replies or []:
                self.feed(reply)

    async def _receive_frames(self) -> AsyncIterator[str | bytes]:
        while True:
            frame = await self._inbound.get()
            if frame is None:
                return
            yield frame
