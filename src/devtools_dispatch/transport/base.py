"""Client-side transport abstraction.

A transport moves already-framed messages: one protocol message per frame.
It knows nothing about ids, sessions or events; that is the dispatcher's job.

Architecture:
- Transport is the PROTOCOL (interface) the dispatcher depends on
- BaseTransport provides the connection state machine for implementations
- Iteration of frames() ending is the "connection closed" notification
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from ..config import TransportConfig
from ..errors import ConnectionClosedError

logger = logging.getLogger(__name__)


class TransportState(str, Enum):
    """Connection state machine."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


@runtime_checkable
class Transport(Protocol):
    """Protocol for frame transports.

    All transports must implement:
    - connect/close: lifecycle management
    - write: send one frame
    - frames: inbound frames in arrival order; the iterator ends when the
      connection closes
    """

    @property
    def state(self) -> TransportState:
        """Current connection state."""
        ...

    @property
    def is_connected(self) -> bool:
        """Check if transport is connected."""
        ...

    async def connect(self) -> None:
        """Establish the connection.

        Raises:
            ConnectionError: If connection fails
        """
        ...

    async def close(self) -> None:
        """Close the connection gracefully."""
        ...

    async def write(self, frame: str) -> None:
        """Send one frame.

        Raises:
            ConnectionClosedError: If the connection is not usable
        """
        ...

    def frames(self) -> AsyncIterator[str | bytes]:
        """Yield inbound frames until the connection closes."""
        ...


class BaseTransport(ABC):
    """Base class for transports with common state handling."""

    def __init__(self, config: TransportConfig | None = None):
        self.config = config or TransportConfig()
        self._state = TransportState.DISCONNECTED
        self._open = False  # resources held by the implementation
        self._lock = asyncio.Lock()

    @property
    def state(self) -> TransportState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Check if transport is connected."""
        return self._state == TransportState.CONNECTED

    async def connect(self) -> None:
        """Establish connection."""
        async with self._lock:
            if self._state == TransportState.CONNECTED:
                return
            if self._state == TransportState.CLOSED:
                raise ConnectionClosedError(f"{self.__class__.__name__} is closed")

            self._state = TransportState.CONNECTING
            try:
                await self._do_connect()
            except Exception as e:
                self._state = TransportState.DISCONNECTED
                raise ConnectionError(f"Failed to connect: {e}") from e
            self._open = True
            self._state = TransportState.CONNECTED
            logger.info(f"{self.__class__.__name__} connected")

    async def close(self) -> None:
        """Close the connection."""
        async with self._lock:
            self._state = TransportState.CLOSED
            if self._open:
                self._open = False
                await self._do_close()
                logger.info(f"{self.__class__.__name__} closed")

    async def write(self, frame: str) -> None:
        """Send one frame."""
        if not self.is_connected:
            raise ConnectionClosedError(f"{self.__class__.__name__} is not connected")
        logger.debug(f"> {frame[:300]}")
        await self._do_write(frame)

    async def frames(self) -> AsyncIterator[str | bytes]:
        """Yield inbound frames; the transport is closed once this ends."""
        if not self.is_connected:
            raise ConnectionClosedError(f"{self.__class__.__name__} is not connected")
        try:
            async for frame in self._receive_frames():
                yield frame
        finally:
            if self._state != TransportState.CLOSED:
                self._state = TransportState.CLOSED
                logger.info(f"{self.__class__.__name__} connection ended by remote")

    # Abstract methods for subclasses
    @abstractmethod
    async def _do_connect(self) -> None:
        """Implementation-specific connection logic."""
        ...

    @abstractmethod
    async def _do_close(self) -> None:
        """Implementation-specific disconnection logic."""
        ...

    @abstractmethod
    async def _do_write(self, frame: str) -> None:
        """Implementation-specific send logic."""
        ...

    @abstractmethod
    def _receive_frames(self) -> AsyncIterator[str | bytes]:
        """Implementation-specific receive logic. Must be an async generator."""
        ...

    async def __aenter__(self) -> BaseTransport:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
