"""WebSocket transport.

The remote debugging endpoint speaks one JSON message per WebSocket text
message, so WebSocket framing is the protocol framing.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed

from ..config import TransportConfig
from ..errors import ConnectionClosedError
from .base import BaseTransport

logger = logging.getLogger(__name__)


class WebSocketTransport(BaseTransport):
    """Transport over a WebSocket connection.

    Usage:
        transport = WebSocketTransport("ws://127.0.0.1:9222/devtools/browser/<id>")
        async with Dispatcher(transport) as dispatcher:
            ...
    """

    def __init__(self, url: str, config: TransportConfig | None = None):
        super().__init__(config)
        if url.startswith("http://") or url.startswith("https://"):
            url = url.replace("http://", "ws://", 1).replace("https://", "wss://", 1)
        self.url = url
        self._ws: Any = None

    async def _do_connect(self) -> None:
        """Open the WebSocket connection."""
        self._ws = await websockets.connect(
            self.url,
            max_size=self.config.max_frame_size,
            open_timeout=self.config.open_timeout,
            close_timeout=self.config.close_timeout,
            ping_interval=self.config.ping_interval,
            ping_timeout=self.config.ping_timeout,
        )
        logger.info(f"WebSocket connected to {self.url}")

    async def _do_close(self) -> None:
        """Close the WebSocket connection."""
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    async def _do_write(self, frame: str) -> None:
        if self._ws is None:
            raise ConnectionClosedError("WebSocket not connected")
        try:
            await self._ws.send(frame)
        except ConnectionClosed as e:
            raise ConnectionClosedError(f"WebSocket closed: {e}") from e

    async def _receive_frames(self) -> AsyncIterator[str | bytes]:
        """Receive messages until the socket closes."""
        if self._ws is None:
            raise ConnectionClosedError("WebSocket not connected")
        while True:
            try:
                message = await self._ws.recv()
            except ConnectionClosed as e:
                logger.info(f"WebSocket closed: {e}")
                return
            yield message
