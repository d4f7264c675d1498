"""Event router - fans decoded events out to subscribers.

Subscribers register for an exact (session, domain, event) key and are
called in registration order. Delivery is synchronous: the router never
awaits a handler. A handler that returns an awaitable has it scheduled as a
task, so slow work never stalls the read loop or the other subscribers.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .anomalies import AnomalyKind, AnomalyLog

logger = logging.getLogger(__name__)

# Handlers receive the event's params. Returning an awaitable is allowed.
EventHandler = Callable[[dict[str, Any]], Any]

SubscriptionKey = tuple[str, str, str]


@dataclass(frozen=True, eq=False)
class Subscription:
    """Token returned by subscribe(); pass it to unsubscribe()."""

    token: int
    session_id: str
    domain: str
    event: str
    handler: EventHandler

    @property
    def key(self) -> SubscriptionKey:
        return (self.session_id, self.domain, self.event)


class EventRouter:
    """Maps (session, domain, event) to an ordered set of handlers."""

    def __init__(self, anomalies: AnomalyLog | None = None) -> None:
        # dict preserves insertion order, giving FIFO delivery and O(1) removal
        self._subscriptions: dict[SubscriptionKey, dict[int, Subscription]] = {}
        self._tokens = itertools.count(1)
        self._tasks: set[asyncio.Future[Any]] = set()
        self._anomalies = anomalies if anomalies is not None else AnomalyLog()

    def subscribe(
        self,
        session_id: str,
        domain: str,
        event: str,
        handler: EventHandler,
    ) -> Subscription:
        """Register a handler for one event of one session.

        The same handler may be registered several times; each registration
        is delivered to and removed independently.
        """
        subscription = Subscription(next(self._tokens), session_id, domain, event, handler)
        self._subscriptions.setdefault(subscription.key, {})[subscription.token] = subscription
        logger.debug(
            f"Subscribed #{subscription.token} to {domain}.{event} "
            f"(session={session_id or 'root'})"
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Remove exactly one subscription.

        Returns:
            False if it was already removed
        """
        handlers = self._subscriptions.get(subscription.key)
        if handlers is None or handlers.pop(subscription.token, None) is None:
            return False
        if not handlers:
            del self._subscriptions[subscription.key]
        logger.debug(f"Unsubscribed #{subscription.token}")
        return True

    def unsubscribe_session(self, session_id: str) -> int:
        """Drop every subscription of a session. Returns how many were removed."""
        keys = [key for key in self._subscriptions if key[0] == session_id]
        removed = 0
        for key in keys:
            removed += len(self._subscriptions.pop(key))
        return removed

    def dispatch(
        self,
        session_id: str,
        domain: str,
        event: str,
        payload: dict[str, Any],
    ) -> int:
        """Deliver an event to every handler registered for its exact key.

        A key with no subscribers is a silent no-op. A handler that raises is
        logged and does not prevent delivery to the handlers after it.

        Returns:
            Number of handlers invoked
        """
        handlers = self._subscriptions.get((session_id, domain, event))
        if not handlers:
            return 0

        delivered = 0
        for subscription in list(handlers.values()):
            # An earlier handler may have unsubscribed this one
            if subscription.token not in handlers:
                continue
            delivered += 1
            try:
                result = subscription.handler(payload)
            except Exception as e:
                logger.exception(f"Error in handler for {domain}.{event}")
                self._anomalies.record(
                    AnomalyKind.HANDLER_ERROR,
                    f"{domain}.{event} handler #{subscription.token} raised {e!r}",
                    session_id=session_id,
                )
                continue
            if inspect.isawaitable(result):
                self._schedule(result, f"{domain}.{event}", session_id)
        return delivered

    def _schedule(self, awaitable: Any, name: str, session_id: str) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)

        def done(t: asyncio.Future[Any]) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error(f"Async handler for {name} failed: {exc!r}")
                self._anomalies.record(
                    AnomalyKind.HANDLER_ERROR,
                    f"{name} async handler raised {exc!r}",
                    session_id=session_id,
                )

        task.add_done_callback(done)

    async def drain(self) -> None:
        """Wait for handler tasks scheduled so far to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_tasks(self) -> None:
        for task in list(self._tasks):
            task.cancel()

    def subscriptions(self, session_id: str | None = None) -> list[Subscription]:
        return [
            s
            for handlers in self._subscriptions.values()
            for s in handlers.values()
            if session_id is None or s.session_id == session_id
        ]

    def has_subscribers(self, session_id: str, domain: str, event: str) -> bool:
        return bool(self._subscriptions.get((session_id, domain, event)))

    def clear(self) -> None:
        self._subscriptions.clear()

    def __len__(self) -> int:
        return sum(len(h) for h in self._subscriptions.values())
