"""Unit tests for the message codec.

Covers:
- Command encoding (root vs child session, opaque params)
- Response/event classification on decode
- Malformed frame rejection
"""

from __future__ import annotations

import json

import pytest

from devtools_dispatch.errors import MalformedMessageError, ProtocolError
from devtools_dispatch.protocol import (
    Command,
    EventEnvelope,
    MessageCodec,
    ResponseEnvelope,
    join_method,
    split_method,
)


@pytest.fixture
def codec() -> MessageCodec:
    return MessageCodec()


# =============================================================================
# Encoding
# =============================================================================


class TestEncode:
    """Tests for MessageCodec.encode."""

    def test_root_session_has_no_session_id(self, codec: MessageCodec) -> None:
        """Commands for the root session omit sessionId entirely."""
        frame = json.loads(codec.encode("", 1, "Target", "getTargets"))

        assert frame == {"id": 1, "method": "Target.getTargets", "params": {}}

    def test_none_session_is_root(self, codec: MessageCodec) -> None:
        frame = json.loads(codec.encode(None, 3, "Browser", "getVersion"))
        assert "sessionId" not in frame

    def test_child_session_carries_session_id(self, codec: MessageCodec) -> None:
        """Child-session commands are tagged with camelCase sessionId."""
        frame = json.loads(codec.encode("S1", 7, "Page", "navigate", {"url": "https://a.test"}))

        assert frame["sessionId"] == "S1"
        assert frame["method"] == "Page.navigate"
        assert frame["params"] == {"url": "https://a.test"}
        assert frame["id"] == 7

    def test_params_are_passed_through_untouched(self, codec: MessageCodec) -> None:
        """Nested params are not interpreted or renamed."""
        params = {"snake_case": 1, "nested": {"a": [1, 2, {"b": None}]}}
        frame = json.loads(codec.encode("", 1, "Runtime", "evaluate", params))
        assert frame["params"] == params

    def test_encode_command_requires_id(self, codec: MessageCodec) -> None:
        command = Command.create("Page", "enable")
        with pytest.raises(ValueError, match="no id"):
            codec.encode_command(command)

    def test_encode_command(self, codec: MessageCodec) -> None:
        command = Command.create("Page", "enable", session_id="S2")
        command.id = 11
        frame = json.loads(codec.encode_command(command))
        assert frame == {"id": 11, "method": "Page.enable", "params": {}, "sessionId": "S2"}


# =============================================================================
# Decoding
# =============================================================================


class TestDecode:
    """Tests for MessageCodec.decode classification."""

    def test_success_response(self, codec: MessageCodec) -> None:
        message = codec.decode('{"id": 4, "result": {"frameId": "F1"}}')

        assert isinstance(message, ResponseEnvelope)
        assert message.id == 4
        assert message.result == {"frameId": "F1"}
        assert not message.is_error
        assert message.session_id is None

    def test_error_response(self, codec: MessageCodec) -> None:
        message = codec.decode(
            '{"id": 5, "error": {"code": -32601, "message": "Method not found"}, "sessionId": "S1"}'
        )

        assert isinstance(message, ResponseEnvelope)
        assert message.is_error
        assert message.session_id == "S1"

        error = message.to_exception("Page.bogus")
        assert isinstance(error, ProtocolError)
        assert error.code == -32601
        assert error.method == "Page.bogus"
        assert "Method not found" in str(error)

    def test_event_without_session(self, codec: MessageCodec) -> None:
        message = codec.decode('{"method": "Target.targetCreated", "params": {"targetInfo": {}}}')

        assert isinstance(message, EventEnvelope)
        assert message.domain == "Target"
        assert message.event == "targetCreated"
        assert message.session_id is None

    def test_event_with_session(self, codec: MessageCodec) -> None:
        message = codec.decode(
            '{"method": "Page.loadEventFired", "params": {"timestamp": 1.5}, "sessionId": "S9"}'
        )
        assert isinstance(message, EventEnvelope)
        assert message.session_id == "S9"
        assert message.params == {"timestamp": 1.5}

    def test_event_with_missing_or_null_params(self, codec: MessageCodec) -> None:
        assert codec.decode('{"method": "Page.frameResized"}').params == {}
        assert codec.decode('{"method": "Page.frameResized", "params": null}').params == {}

    def test_bytes_frame(self, codec: MessageCodec) -> None:
        message = codec.decode(b'{"id": 1, "result": {}}')
        assert isinstance(message, ResponseEnvelope)

    def test_event_wins_over_id(self, codec: MessageCodec) -> None:
        """A frame with both method and id is treated as an event."""
        message = codec.decode('{"id": 1, "method": "Page.loadEventFired", "params": {}}')
        assert isinstance(message, EventEnvelope)


class TestDecodeMalformed:
    """Frames that match neither envelope shape."""

    @pytest.mark.parametrize(
        "frame",
        [
            "not json",
            "[1, 2, 3]",
            '"just a string"',
            "{}",
            '{"id": 1}',
            '{"result": {}}',
            '{"id": "1", "result": {}}',
            '{"id": 1, "result": [1]}',
            '{"id": 1, "error": null}',
            '{"method": "noDomain", "params": {}}',
            '{"method": "Page.loadEventFired", "params": [1]}',
        ],
    )
    def test_rejected(self, codec: MessageCodec, frame: str) -> None:
        with pytest.raises(MalformedMessageError):
            codec.decode(frame)

    def test_error_keeps_truncated_frame(self, codec: MessageCodec) -> None:
        frame = "x" * 1000
        with pytest.raises(MalformedMessageError) as exc_info:
            codec.decode(frame)
        assert exc_info.value.frame == "x" * 200


class TestMethodNames:
    def test_split(self) -> None:
        assert split_method("Page.navigate") == ("Page", "navigate")

    def test_split_keeps_remainder(self) -> None:
        assert split_method("A.b.c") == ("A", "b.c")

    @pytest.mark.parametrize("name", ["", "Page", ".navigate", "Page."])
    def test_split_rejects_unqualified(self, name: str) -> None:
        with pytest.raises(MalformedMessageError):
            split_method(name)

    def test_join(self) -> None:
        assert join_method("DOM", "getDocument") == "DOM.getDocument"


class TestRoundTrip:
    """Encoded command frames decode back to the same domain, method and params."""

    @pytest.mark.parametrize("session_id", [None, "S1"])
    def test_encode_then_decode(self, codec: MessageCodec, session_id: str | None) -> None:
        params = {"url": "https://e.test/", "referrer": None, "nested": {"a": [1, 2]}}
        message = codec.decode(codec.encode(session_id, 9, "Page", "navigate", params))

        assert isinstance(message, EventEnvelope)
        assert (message.domain, message.event, message.params) == ("Page", "navigate", params)
        assert message.session_id == session_id

    def test_registered_command(self, codec: MessageCodec) -> None:
        command = Command.create("Runtime", "evaluate", {"expression": "1 + 1"}, "S2")
        command.id = 3
        message = codec.decode(codec.encode_command(command))

        assert (message.domain, message.event, message.params) == (
            "Runtime",
            "evaluate",
            {"expression": "1 + 1"},
        )
        assert message.session_id == "S2"
