"""Unit tests for the anomaly log and the error taxonomy."""

from __future__ import annotations

import logging

import pytest

from devtools_dispatch.anomalies import AnomalyKind, AnomalyLog
from devtools_dispatch.errors import (
    CommandTimeoutError,
    DispatchError,
    MalformedMessageError,
    ProtocolError,
    SessionDetachedError,
)


class TestAnomalyLog:
    def test_record_and_counts(self, caplog: pytest.LogCaptureFixture) -> None:
        log = AnomalyLog()
        with caplog.at_level(logging.WARNING):
            log.record(AnomalyKind.STRAY_RESPONSE, "late", command_id=3)
            log.record(AnomalyKind.UNKNOWN_SESSION, "ghost", session_id="S9")
            log.record(AnomalyKind.STRAY_RESPONSE, "late again", command_id=4)

        assert log.counts() == {AnomalyKind.STRAY_RESPONSE: 2, AnomalyKind.UNKNOWN_SESSION: 1}
        assert [a.command_id for a in log.of_kind(AnomalyKind.STRAY_RESPONSE)] == [3, 4]
        assert len(caplog.records) == 3

    def test_bounded(self) -> None:
        log = AnomalyLog(maxlen=2)
        for n in range(5):
            log.record(AnomalyKind.MALFORMED_FRAME, f"frame {n}")

        assert len(log) == 2
        assert [a.detail for a in log] == ["frame 3", "frame 4"]
        assert log.counts() == {AnomalyKind.MALFORMED_FRAME: 5}

    def test_clear(self) -> None:
        log = AnomalyLog()
        log.record(AnomalyKind.HANDLER_ERROR, "boom")
        log.clear()
        assert len(log) == 0
        assert log.counts() == {}


class TestErrors:
    def test_all_derive_from_dispatch_error(self) -> None:
        assert issubclass(ProtocolError, DispatchError)
        assert issubclass(SessionDetachedError, DispatchError)

    def test_protocol_error_message(self) -> None:
        error = ProtocolError(-32000, "Target closed", method="Page.navigate")
        assert str(error) == "Page.navigate: Target closed"
        assert ProtocolError(None, "bare").method is None

    def test_malformed_frame_preview_from_bytes(self) -> None:
        error = MalformedMessageError("bad", b"\xff" + b"a" * 300)
        assert isinstance(error.frame, str)
        assert len(error.frame) == 200

    def test_timeout_error_attributes(self) -> None:
        error = CommandTimeoutError(7, "Page.navigate", 2.5)
        assert (error.command_id, error.method, error.timeout) == (7, "Page.navigate", 2.5)
        assert "2.5s" in str(error)
