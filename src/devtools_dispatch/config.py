"""Configuration for the dispatcher and its transports."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

DEFAULT_HTTP_ENDPOINT = "http://127.0.0.1:9222"


@dataclass
class DispatcherConfig:
    """Configuration for a Dispatcher instance.

    One config per connection. Nothing here is shared between dispatchers.
    """

    # Default per-command deadline in seconds (None = wait forever)
    command_timeout: float | None = None
    sweep_interval: float = 0.1

    # Flattened sessions carry `sessionId` on every frame. When disabled,
    # child-session commands are wrapped in Target.sendMessageToTarget.
    flatten: bool = True
    auto_attach_sessions: bool = True

    # Bookkeeping limits
    detached_retention: int = 128
    anomaly_log_size: int = 256
    max_command_id: int = 2**31 - 1

    warn_on_deprecated: bool = True


@dataclass
class TransportConfig:
    """Configuration for client transports."""

    open_timeout: float = 10.0
    close_timeout: float = 5.0

    # Screenshots and heap snapshots easily exceed 1 MiB
    max_frame_size: int | None = 256 * 1024 * 1024

    ping_interval: float | None = 30.0
    ping_timeout: float | None = 10.0

    # Stream transports only: b"\0" for pipe mode, b"\n" for JSON lines
    frame_delimiter: bytes = b"\0"


class _DefaultTimeout:
    """Sentinel: use DispatcherConfig.command_timeout. (None means no deadline.)"""

    def __repr__(self) -> str:
        return "DEFAULT_TIMEOUT"


DEFAULT_TIMEOUT: Any = _DefaultTimeout()
