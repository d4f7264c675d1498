"""Protocol anomaly log.

Anomalies are unexpected but survivable inbound conditions: a response for
an id that is not pending, a frame tagged with a session nobody attached,
a frame that does not parse. They are logged and kept in a bounded log so
tests and diagnostics can inspect them; they never raise.
"""

from __future__ import annotations

import logging
import time
from collections import Counter, deque
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class AnomalyKind(str, Enum):
    """Kinds of recorded anomalies."""

    STRAY_RESPONSE = "stray_response"
    UNKNOWN_SESSION = "unknown_session"
    MALFORMED_FRAME = "malformed_frame"
    HANDLER_ERROR = "handler_error"


@dataclass(frozen=True)
class Anomaly:
    """A single recorded anomaly."""

    kind: AnomalyKind
    detail: str
    command_id: int | None = None
    session_id: str | None = None
    at: float = field(default_factory=time.time)


class AnomalyLog:
    """Bounded, append-only record of anomalies."""

    def __init__(self, maxlen: int = 256) -> None:
        self._entries: deque[Anomaly] = deque(maxlen=maxlen)
        self._counts: Counter[AnomalyKind] = Counter()

    def record(
        self,
        kind: AnomalyKind,
        detail: str,
        *,
        command_id: int | None = None,
        session_id: str | None = None,
    ) -> Anomaly:
        anomaly = Anomaly(kind=kind, detail=detail, command_id=command_id, session_id=session_id)
        self._entries.append(anomaly)
        self._counts[kind] += 1
        logger.warning(f"Protocol anomaly ({kind.value}): {detail}")
        return anomaly

    def counts(self) -> dict[AnomalyKind, int]:
        """Per-kind totals, including entries already evicted from the log."""
        return dict(self._counts)

    def of_kind(self, kind: AnomalyKind) -> list[Anomaly]:
        return [a for a in self._entries if a.kind == kind]

    def clear(self) -> None:
        self._entries.clear()
        self._counts.clear()

    def __iter__(self) -> Iterator[Anomaly]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)
