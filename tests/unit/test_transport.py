"""Unit tests for the transports.

Tests the transport implementations including:
- Connection state machine (BaseTransport)
- MemoryTransport feeding and auto-responding
- StreamTransport delimiter framing
- WebSocketTransport URL handling
"""

from __future__ import annotations

import asyncio

import pytest

from devtools_dispatch.config import TransportConfig
from devtools_dispatch.errors import ConnectionClosedError
from devtools_dispatch.transport import (
    MemoryTransport,
    StreamTransport,
    Transport,
    TransportState,
    WebSocketTransport,
)


async def collect(transport, limit: int = 100) -> list:
    frames = []
    async for frame in transport.frames():
        frames.append(frame)
        if len(frames) >= limit:
            break
    return frames


# =============================================================================
# MemoryTransport / BaseTransport
# =============================================================================


class TestMemoryTransport:
    """Tests for the in-memory transport and the shared state machine."""

    def test_satisfies_protocol(self) -> None:
        assert isinstance(MemoryTransport(), Transport)

    @pytest.mark.anyio
    async def test_state_machine(self) -> None:
        transport = MemoryTransport()
        assert transport.state == TransportState.DISCONNECTED
        assert not transport.is_connected

        await transport.connect()
        assert transport.state == TransportState.CONNECTED
        assert transport.is_connected

        await transport.close()
        assert transport.state == TransportState.CLOSED

    @pytest.mark.anyio
    async def test_connect_after_close_fails(self) -> None:
        transport = MemoryTransport()
        await transport.connect()
        await transport.close()
        with pytest.raises(ConnectionClosedError):
            await transport.connect()

    @pytest.mark.anyio
    async def test_write_requires_connection(self) -> None:
        transport = MemoryTransport()
        with pytest.raises(ConnectionClosedError):
            await transport.write('{"id": 1}')

    @pytest.mark.anyio
    async def test_written_frames(self) -> None:
        async with MemoryTransport() as transport:
            await transport.write('{"id": 1, "method": "Page.enable", "params": {}}')
            await transport.write('{"id": 2, "method": "Page.reload", "params": {}}')

            assert transport.written[0]["id"] == 1
            assert transport.written_methods() == ["Page.enable", "Page.reload"]

    @pytest.mark.anyio
    async def test_feed_and_close_remote(self) -> None:
        transport = MemoryTransport()
        await transport.connect()
        transport.respond(1, {"ok": True})
        transport.emit("Page.loadEventFired", {"timestamp": 2}, session_id="S1")
        transport.feed("raw frame")
        transport.close_remote()

        frames = await collect(transport)

        assert len(frames) == 3
        assert frames[2] == "raw frame"
        assert transport.state == TransportState.CLOSED

    @pytest.mark.anyio
    async def test_responder_replies_are_fed_back(self) -> None:
        def responder(message):
            return [{"id": message["id"], "result": {}}, {"method": "Page.frameNavigated"}]

        transport = MemoryTransport(responder)
        await transport.connect()
        await transport.write('{"id": 9, "method": "Page.navigate", "params": {}}')

        frames = await collect(transport, limit=2)
        assert '"id": 9' in frames[0]
        assert "Page.frameNavigated" in frames[1]

    @pytest.mark.anyio
    async def test_write_error(self) -> None:
        transport = MemoryTransport()
        await transport.connect()
        transport.write_error = ConnectionResetError("peer reset")
        with pytest.raises(ConnectionResetError):
            await transport.write("{}")


# =============================================================================
# StreamTransport
# =============================================================================


class FakeWriter:
    """Minimal StreamWriter stand-in."""

    def __init__(self) -> None:
        self.data = bytearray()
        self.closed = False

    def write(self, data: bytes) -> None:
        self.data.extend(data)

    async def drain(self) -> None:
        pass

    def is_closing(self) -> bool:
        return self.closed

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        pass


class TestStreamTransport:
    """Tests for delimiter framing."""

    @pytest.mark.anyio
    async def test_nul_delimited_frames(self) -> None:
        reader = asyncio.StreamReader()
        reader.feed_data(b'{"id": 1, "result": {}}\0\0{"method": "Page.loadEventFired"}\0{"id"')
        reader.feed_eof()
        transport = StreamTransport(reader, FakeWriter())
        await transport.connect()

        frames = await collect(transport)

        assert frames == [b'{"id": 1, "result": {}}', b'{"method": "Page.loadEventFired"}']

    @pytest.mark.anyio
    async def test_frames_split_across_reads(self) -> None:
        reader = asyncio.StreamReader()
        transport = StreamTransport(reader, FakeWriter(), TransportConfig(frame_delimiter=b"\n"))
        await transport.connect()

        async def produce() -> None:
            reader.feed_data(b'{"id": 1, "re')
            await asyncio.sleep(0)
            reader.feed_data(b'sult": {}}\n')
            reader.feed_eof()

        producer = asyncio.create_task(produce())
        frames = await collect(transport)
        await producer

        assert frames == [b'{"id": 1, "result": {}}']

    @pytest.mark.anyio
    async def test_write_appends_delimiter(self) -> None:
        writer = FakeWriter()
        transport = StreamTransport(asyncio.StreamReader(), writer)
        await transport.connect()

        await transport.write('{"id": 1}')
        assert bytes(writer.data) == b'{"id": 1}\0'

    @pytest.mark.anyio
    async def test_oversized_frame_drops_connection(self) -> None:
        reader = asyncio.StreamReader()
        reader.feed_data(b"x" * 64)
        transport = StreamTransport(reader, FakeWriter(), TransportConfig(max_frame_size=16))
        await transport.connect()

        assert await collect(transport) == []
        assert transport.state == TransportState.CLOSED

    @pytest.mark.anyio
    async def test_close_closes_writer(self) -> None:
        writer = FakeWriter()
        transport = StreamTransport(asyncio.StreamReader(), writer)
        await transport.connect()
        await transport.close()
        assert writer.closed

    def test_empty_delimiter_rejected(self) -> None:
        with pytest.raises(ValueError):
            StreamTransport(None, FakeWriter(), TransportConfig(frame_delimiter=b""))


# =============================================================================
# WebSocketTransport
# =============================================================================


class TestWebSocketTransport:
    def test_http_url_converted(self) -> None:
        assert WebSocketTransport("http://127.0.0.1:9222/devtools/browser/x").url == (
            "ws://127.0.0.1:9222/devtools/browser/x"
        )
        assert WebSocketTransport("https://host/devtools/page/1").url == "wss://host/devtools/page/1"

    def test_ws_url_kept(self) -> None:
        assert WebSocketTransport("ws://host:9222/x").url == "ws://host:9222/x"

    @pytest.mark.anyio
    async def test_write_before_connect(self) -> None:
        with pytest.raises(ConnectionClosedError):
            await WebSocketTransport("ws://host/x").write("{}")

    @pytest.mark.anyio
    async def test_connect_failure_wrapped(self) -> None:
        transport = WebSocketTransport(
            "ws://127.0.0.1:1/devtools/browser/none", TransportConfig(open_timeout=1.0)
        )
        with pytest.raises(ConnectionError):
            await transport.connect()
        assert transport.state == TransportState.DISCONNECTED
