"""Session handles and domain proxies.

Thin ergonomic layer over the Dispatcher:

    page = dispatcher.session(session_id)
    await page.Page.enable()
    page.Page.loadEventFired(lambda params: print("loaded", params))
    await page.Page.navigate(url="https://example.com")

Attribute names are resolved against the schema table only to tell events from
commands. Unknown names are sent as commands unchanged; payloads are never
validated.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from .config import DEFAULT_TIMEOUT
from .protocol.commands import ROOT_SESSION_ID
from .protocol.messages import split_method
from .protocol.schema import MemberKind
from .router import EventHandler, Subscription

if TYPE_CHECKING:
    from .dispatcher import CommandHandle, Dispatcher
    from .sessions import Session


class SessionHandle:
    """One session of a dispatcher, addressed by id."""

    def __init__(self, dispatcher: Dispatcher, session_id: str = ROOT_SESSION_ID) -> None:
        self.dispatcher = dispatcher
        self.session_id = session_id

    @property
    def info(self) -> Session | None:
        return self.dispatcher.sessions.get(self.session_id)

    @property
    def is_active(self) -> bool:
        return self.dispatcher.sessions.is_active(self.session_id)

    @property
    def is_root(self) -> bool:
        return self.session_id == ROOT_SESSION_ID

    async def send(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = DEFAULT_TIMEOUT,
    ) -> dict[str, Any]:
        """Send `<Domain>.<method>` on this session and wait for the result."""
        return await self.dispatcher.call(self.session_id, method, params, timeout)

    async def issue(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = DEFAULT_TIMEOUT,
    ) -> CommandHandle:
        domain, name = split_method(method)
        return await self.dispatcher.issue(self.session_id, domain, name, params, timeout)

    def on(self, event: str, handler: EventHandler) -> Subscription:
        """Subscribe to `<Domain>.<event>` on this session."""
        return self.dispatcher.on(self.session_id, event, handler)

    def subscribe(self, domain: str, event: str, handler: EventHandler) -> Subscription:
        return self.dispatcher.subscribe(self.session_id, domain, event, handler)

    def off(self, subscription: Subscription) -> bool:
        return self.dispatcher.unsubscribe(subscription)

    async def wait_for(
        self,
        event: str,
        timeout: float | None = None,
        predicate: Callable[[dict[str, Any]], bool] | None = None,
    ) -> dict[str, Any]:
        domain, name = split_method(event)
        return await self.dispatcher.wait_for(self.session_id, domain, name, timeout, predicate)

    async def attach(self, target_id: str) -> SessionHandle:
        """Attach to a target as a child of this session."""
        child_id = await self.dispatcher.attach(target_id, self.session_id)
        return SessionHandle(self.dispatcher, child_id)

    async def detach(self) -> bool:
        return await self.dispatcher.detach(self.session_id)

    def domain(self, name: str) -> DomainProxy:
        return DomainProxy(self, name)

    def __getattr__(self, name: str) -> DomainProxy:
        # Domains are capitalised (Page, DOM, Runtime); anything else is a real miss
        if not name[:1].isupper():
            raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")
        return DomainProxy(self, name)

    def __repr__(self) -> str:
        return f"SessionHandle({self.session_id or 'root'!r})"


class DomainProxy:
    """Commands and events of one domain, bound to a session.

    `proxy.navigate(url=...)` sends Page.navigate; `proxy.loadEventFired(handler)`
    subscribes to Page.loadEventFired. Keyword arguments are merged into
    `params`, so a command parameter named `timeout` is passed through to the
    remote side. Use SessionHandle.send() for a per-call deadline.
    """

    def __init__(self, session: SessionHandle, domain: str) -> None:
        self._session = session
        self._domain = domain

    @property
    def name(self) -> str:
        return self._domain

    def _is_event(self, member: str) -> bool:
        spec = self._session.dispatcher.schema.get(self._domain, member)
        return spec is not None and spec.kind == MemberKind.EVENT

    def on(self, event: str, handler: EventHandler) -> Subscription:
        return self._session.subscribe(self._domain, event, handler)

    async def wait_for(
        self,
        event: str,
        timeout: float | None = None,
        predicate: Callable[[dict[str, Any]], bool] | None = None,
    ) -> dict[str, Any]:
        return await self._session.dispatcher.wait_for(
            self._session.session_id, self._domain, event, timeout, predicate
        )

    def __getattr__(self, member: str) -> Callable[..., Any]:
        if member.startswith("_"):
            raise AttributeError(member)

        if self._is_event(member):

            def subscribe(handler: EventHandler) -> Subscription:
                return self.on(member, handler)

            subscribe.__name__ = member
            return subscribe

        def command(params: dict[str, Any] | None = None, **kwargs: Any) -> Awaitable[dict[str, Any]]:
            merged = {**(params or {}), **kwargs}
            return self._session.dispatcher.send(
                self._session.session_id, self._domain, member, merged or None
            )

        command.__name__ = member
        return command

    def __repr__(self) -> str:
        return f"DomainProxy({self._domain!r}, session={self._session.session_id or 'root'!r})"
