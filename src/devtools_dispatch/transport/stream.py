"""Delimited stream transport.

Runs the protocol over an asyncio stream pair where each message is
terminated by a delimiter: NUL for pipe-mode remote debugging, newline for
JSON lines.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from ..config import TransportConfig
from ..errors import ConnectionClosedError
from .base import BaseTransport

logger = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024


class StreamTransport(BaseTransport):
    """Transport over an asyncio StreamReader/StreamWriter pair.

    Wire format:
    - Outbound: UTF-8 JSON text + delimiter
    - Inbound: bytes up to each delimiter; empty frames are skipped
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        config: TransportConfig | None = None,
    ):
        super().__init__(config)
        if not self.config.frame_delimiter:
            raise ValueError("frame_delimiter must not be empty")
        self._reader = reader
        self._writer = writer

    @classmethod
    async def open_tcp(
        cls,
        host: str,
        port: int,
        config: TransportConfig | None = None,
    ) -> StreamTransport:
        """Open a TCP connection carrying delimited frames."""
        reader, writer = await asyncio.open_connection(host, port)
        return cls(reader, writer, config)

    async def _do_connect(self) -> None:
        """Streams are connected when handed to us."""
        if self._writer.is_closing():
            raise ConnectionError("Stream already closed")

    async def _do_close(self) -> None:
        self._writer.close()
        try:
            await asyncio.wait_for(self._writer.wait_closed(), timeout=self.config.close_timeout)
        except (TimeoutError, ConnectionError, OSError) as e:
            logger.debug(f"Error while closing stream: {e}")

    async def _do_write(self, frame: str) -> None:
        if self._writer.is_closing():
            raise ConnectionClosedError("Stream closed")
        try:
            self._writer.write(frame.encode("utf-8") + self.config.frame_delimiter)
            await self._writer.drain()
        except (ConnectionError, OSError) as e:
            raise ConnectionClosedError(f"Stream write failed: {e}") from e

    async def _receive_frames(self) -> AsyncIterator[str | bytes]:
        delimiter = self.config.frame_delimiter
        limit = self.config.max_frame_size
        buffer = bytearray()
        while True:
            try:
                chunk = await self._reader.read(_READ_CHUNK)
            except (ConnectionError, OSError) as e:
                logger.info(f"Stream read failed: {e}")
                return
            if not chunk:
                if buffer.strip():
                    logger.debug(f"Discarding {len(buffer)} bytes of unterminated frame at EOF")
                return

            buffer.extend(chunk)
            while True:
                index = buffer.find(delimiter)
                if index < 0:
                    break
                frame = bytes(buffer[:index])
                del buffer[: index + len(delimiter)]
                if frame.strip():
                    yield frame

            if limit is not None and len(buffer) > limit:
                logger.warning(f"Frame exceeds {limit} bytes; dropping connection")
                return
