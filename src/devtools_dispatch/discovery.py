"""HTTP discovery endpoints of a remote debugging server.

The engine serves a small JSON API next to its WebSocket endpoint:

    GET  /json/version          browser version and its WebSocket URL
    GET  /json/list             open targets
    PUT  /json/new?<url>        open a new tab
    GET  /json/activate/<id>    bring a target to the front
    GET  /json/close/<id>       close a target
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, Field

from .config import DEFAULT_HTTP_ENDPOINT

logger = logging.getLogger(__name__)


class BrowserVersion(BaseModel):
    """Response of /json/version."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    browser: str = Field(default="", alias="Browser")
    protocol_version: str = Field(default="", alias="Protocol-Version")
    user_agent: str = Field(default="", alias="User-Agent")
    v8_version: str = Field(default="", alias="V8-Version")
    webkit_version: str = Field(default="", alias="WebKit-Version")
    websocket_debugger_url: str = Field(default="", alias="webSocketDebuggerUrl")


class TargetDescriptor(BaseModel):
    """One entry of /json/list."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    type: str = "page"
    title: str = ""
    url: str = ""
    description: str = ""
    devtools_frontend_url: str | None = Field(default=None, alias="devtoolsFrontendUrl")
    websocket_debugger_url: str | None = Field(default=None, alias="webSocketDebuggerUrl")
    parent_id: str | None = Field(default=None, alias="parentId")

    @property
    def is_page(self) -> bool:
        return self.type == "page"


class BrowserEndpoint:
    """Client for the HTTP side of a debugging endpoint.

    Usage:
        async with BrowserEndpoint("http://127.0.0.1:9222") as browser:
            version = await browser.version()
            for target in await browser.targets():
                print(target.id, target.url)
    """

    def __init__(
        self,
        base_url: str = DEFAULT_HTTP_ENDPOINT,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
        )

    async def _request(self, method: str, path: str) -> Any:
        logger.debug(f"{method} {self.base_url}{path}")
        response = await self._client.request(method, path)
        response.raise_for_status()
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            # /json/close and /json/activate answer with plain text
            return response.text

    async def version(self) -> BrowserVersion:
        data = await self._request("GET", "/json/version")
        return BrowserVersion.model_validate(data)

    async def targets(self) -> list[TargetDescriptor]:
        data = await self._request("GET", "/json/list")
        return [TargetDescriptor.model_validate(item) for item in data or []]

    async def websocket_url(self) -> str:
        """Browser-level WebSocket URL.

        Raises:
            ValueError: If the endpoint does not report one
        """
        version = await self.version()
        if not version.websocket_debugger_url:
            raise ValueError(f"{self.base_url} did not report a webSocketDebuggerUrl")
        return version.websocket_debugger_url

    async def new_target(self, url: str = "about:blank") -> TargetDescriptor:
        data = await self._request("PUT", f"/json/new?{quote(url, safe=':/?&=#')}")
        return TargetDescriptor.model_validate(data)

    async def activate_target(self, target_id: str) -> None:
        await self._request("GET", f"/json/activate/{target_id}")

    async def close_target(self, target_id: str) -> None:
        await self._request("GET", f"/json/close/{target_id}")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> BrowserEndpoint:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
