"""Unit tests for the pending-command table."""

from __future__ import annotations

import asyncio

import pytest

from devtools_dispatch.anomalies import AnomalyKind, AnomalyLog
from devtools_dispatch.errors import (
    CommandCancelledError,
    CommandTimeoutError,
    SessionDetachedError,
)
from devtools_dispatch.pending import CommandStatus, PendingCommandTable, PendingEntry
from devtools_dispatch.protocol import Command


def make_command(method: str = "navigate", session_id: str = "") -> Command:
    return Command.create("Page", method, {"url": "https://a.test"}, session_id)


class TestRegister:
    """Id allocation."""

    @pytest.mark.anyio
    async def test_ids_are_unique_and_increasing(self) -> None:
        table = PendingCommandTable()
        ids = [table.register(make_command()).id for _ in range(5)]
        assert ids == [1, 2, 3, 4, 5]
        assert len(table) == 5

    @pytest.mark.anyio
    async def test_register_assigns_command_id(self) -> None:
        table = PendingCommandTable()
        command = make_command()
        entry = table.register(command)
        assert command.id == entry.id
        assert entry.status == CommandStatus.PENDING
        assert entry.id in table

    @pytest.mark.anyio
    async def test_unregistered_entry_has_no_id(self) -> None:
        future = asyncio.get_running_loop().create_future()
        entry = PendingEntry(command=make_command(), future=future)
        with pytest.raises(RuntimeError, match="never registered"):
            entry.id

    @pytest.mark.anyio
    async def test_ids_wrap_and_skip_pending(self) -> None:
        table = PendingCommandTable(max_id=3)
        first, second, third = (table.register(make_command()) for _ in range(3))
        table.resolve(second.id, {})

        # 3 was last; 1 is still pending, so the next free id is 2
        assert table.register(make_command()).id == 2
        assert first.id in table and third.id in table

    @pytest.mark.anyio
    async def test_id_space_exhausted(self) -> None:
        table = PendingCommandTable(max_id=2)
        table.register(make_command())
        table.register(make_command())
        with pytest.raises(RuntimeError, match="exhausted"):
            table.register(make_command())

    def test_max_id_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            PendingCommandTable(max_id=0)


class TestResolveReject:
    """Completion by correlation id."""

    @pytest.mark.anyio
    async def test_resolve_completes_future(self) -> None:
        table = PendingCommandTable()
        entry = table.register(make_command())

        assert table.resolve(entry.id, {"frameId": "F1"}) is True
        assert await entry.future == {"frameId": "F1"}
        assert entry.status == CommandStatus.RESOLVED
        assert entry.id not in table

    @pytest.mark.anyio
    async def test_out_of_order_responses(self) -> None:
        """Responses are matched by id, not arrival order."""
        table = PendingCommandTable()
        a = table.register(make_command("navigate"))
        b = table.register(make_command("reload"))

        table.resolve(b.id, {"which": "b"})
        table.resolve(a.id, {"which": "a"})

        assert await a.future == {"which": "a"}
        assert await b.future == {"which": "b"}

    @pytest.mark.anyio
    async def test_reject(self) -> None:
        table = PendingCommandTable()
        entry = table.register(make_command())
        error = RuntimeError("remote failure")

        assert table.reject(entry.id, error) is True
        with pytest.raises(RuntimeError, match="remote failure"):
            await entry.future
        assert entry.status == CommandStatus.REJECTED

    @pytest.mark.anyio
    async def test_second_response_is_stray(self) -> None:
        """Each command completes exactly once; a duplicate is an anomaly."""
        anomalies = AnomalyLog()
        table = PendingCommandTable(anomalies)
        entry = table.register(make_command())

        table.resolve(entry.id, {"n": 1})
        assert table.resolve(entry.id, {"n": 2}) is False

        assert await entry.future == {"n": 1}
        [anomaly] = anomalies.of_kind(AnomalyKind.STRAY_RESPONSE)
        assert anomaly.command_id == entry.id
        assert "already resolved" in anomaly.detail

    @pytest.mark.anyio
    async def test_never_issued_id_is_stray(self) -> None:
        table = PendingCommandTable()
        assert table.reject(999, RuntimeError("x")) is False
        [anomaly] = table.anomalies.of_kind(AnomalyKind.STRAY_RESPONSE)
        assert "never issued" in anomaly.detail

    @pytest.mark.anyio
    async def test_on_complete_callback(self) -> None:
        completed = []
        table = PendingCommandTable()
        entry = table.register(make_command(), on_complete=completed.append)

        table.resolve(entry.id, {})
        table.resolve(entry.id, {})
        assert completed == [entry]

    @pytest.mark.anyio
    async def test_failing_callback_does_not_break_completion(self) -> None:
        def boom(entry):
            raise RuntimeError("callback failure")

        table = PendingCommandTable()
        entry = table.register(make_command(), on_complete=boom)
        table.resolve(entry.id, {"ok": True})
        assert await entry.future == {"ok": True}


class TestCancel:
    """Local cancellation."""

    @pytest.mark.anyio
    async def test_cancel(self) -> None:
        table = PendingCommandTable()
        entry = table.register(make_command())

        assert table.cancel(entry.id, "user abort") is True
        with pytest.raises(CommandCancelledError) as exc_info:
            await entry.future
        assert exc_info.value.reason == "user abort"
        assert entry.status == CommandStatus.CANCELLED

    @pytest.mark.anyio
    async def test_late_response_after_cancel_is_stray(self) -> None:
        table = PendingCommandTable()
        entry = table.register(make_command())
        table.cancel(entry.id)

        assert table.resolve(entry.id, {}) is False
        [anomaly] = table.anomalies.of_kind(AnomalyKind.STRAY_RESPONSE)
        assert "already cancelled" in anomaly.detail
        with pytest.raises(CommandCancelledError):
            await entry.future

    @pytest.mark.anyio
    async def test_cancel_unknown(self) -> None:
        assert PendingCommandTable().cancel(42) is False

    @pytest.mark.anyio
    async def test_cancelled_future_retires_entry(self) -> None:
        table = PendingCommandTable()
        entry = table.register(make_command())

        entry.future.cancel()
        await asyncio.sleep(0)

        assert entry.id not in table
        assert entry.status == CommandStatus.CANCELLED

    @pytest.mark.anyio
    async def test_cancel_session(self) -> None:
        table = PendingCommandTable()
        root = table.register(make_command())
        child_a = table.register(make_command(session_id="S1"))
        child_b = table.register(make_command(session_id="S1"))
        other = table.register(make_command(session_id="S2"))

        count = table.cancel_session("S1", lambda: SessionDetachedError("S1"))

        assert count == 2
        for entry in (child_a, child_b):
            with pytest.raises(SessionDetachedError):
                await entry.future
        assert root.id in table and other.id in table

    @pytest.mark.anyio
    async def test_cancel_all(self) -> None:
        table = PendingCommandTable()
        entries = [table.register(make_command(session_id=s)) for s in ("", "S1", "S2")]

        assert table.cancel_all(lambda: RuntimeError("closed")) == 3
        assert len(table) == 0
        for entry in entries:
            with pytest.raises(RuntimeError, match="closed"):
                await entry.future


class TestTimeoutSweep:
    """Deadline enforcement."""

    @pytest.mark.anyio
    async def test_expired_entries_time_out(self) -> None:
        table = PendingCommandTable()
        loop = asyncio.get_running_loop()
        short = table.register(make_command("navigate"), timeout=1.0)
        long = table.register(make_command("reload"), timeout=60.0)
        unbounded = table.register(make_command("stopLoading"))

        expired = table.timeout_sweep(loop.time() + 5.0)

        assert expired == [short]
        assert short.status == CommandStatus.TIMED_OUT
        with pytest.raises(CommandTimeoutError) as exc_info:
            await short.future
        assert exc_info.value.method == "Page.navigate"
        assert exc_info.value.timeout == 1.0
        assert long.id in table and unbounded.id in table

    @pytest.mark.anyio
    async def test_sweep_before_deadline_is_noop(self) -> None:
        table = PendingCommandTable()
        entry = table.register(make_command(), timeout=30.0)
        assert table.timeout_sweep() == []
        assert entry.id in table

    @pytest.mark.anyio
    async def test_late_response_after_timeout_is_stray(self) -> None:
        table = PendingCommandTable()
        loop = asyncio.get_running_loop()
        entry = table.register(make_command(), timeout=0.5)
        table.timeout_sweep(loop.time() + 1.0)

        assert table.resolve(entry.id, {}) is False
        [anomaly] = table.anomalies.of_kind(AnomalyKind.STRAY_RESPONSE)
        assert "already timed_out" in anomaly.detail
        with pytest.raises(CommandTimeoutError):
            await entry.future

    @pytest.mark.anyio
    async def test_next_deadline(self) -> None:
        table = PendingCommandTable()
        assert table.next_deadline() is None
        a = table.register(make_command(), timeout=10.0)
        table.register(make_command(), timeout=20.0)
        assert table.next_deadline() == a.deadline
