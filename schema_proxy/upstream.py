"""
Upstream MCP Link
One upstream MCP connection per proxied client.

`UpstreamClient` is the capability the proxy needs from an MCP client
library; `MCPUpstreamClient` provides it on top of the official `mcp` SDK
over either the legacy SSE transport or Streamable HTTP. `UpstreamSession`
wraps a client and turns every failure into `UpstreamError`.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Dict, List, Optional

from mcp import ClientSession
from mcp.client.sse import sse_client
from mcp.client.streamable_http import streamablehttp_client
from mcp.types import Implementation

from .auth import AuthProvider
from .errors import UpstreamError
from .version import __version__


logger = logging.getLogger(__name__)

TRANSPORT_SSE = "sse"
TRANSPORT_STREAMABLE_HTTP = "streamable-http"
TRANSPORTS = (TRANSPORT_SSE, TRANSPORT_STREAMABLE_HTTP)

# Upper bound on tools/list pages fetched for one request
MAX_TOOL_PAGES = 50


def _error_text(exc: BaseException) -> str:
    # anyio task groups wrap the real failure in an exception group
    while isinstance(getattr(exc, "exceptions", None), (list, tuple)) and exc.exceptions:
        exc = exc.exceptions[0]
    return str(exc) or type(exc).__name__


class UpstreamClient(ABC):
    """Minimal MCP client surface used by the proxy."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection and complete the MCP handshake."""
        raise NotImplementedError

    @abstractmethod
    async def list_tools(self, cursor: Optional[str] = None) -> Dict[str, Any]:
        """Return one raw `tools/list` result page."""
        raise NotImplementedError

    @abstractmethod
    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Return the raw `tools/call` result."""
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        raise NotImplementedError


class MCPUpstreamClient(UpstreamClient):
    """
    `mcp` SDK client kept open in a background keeper task.

    The SDK transports are anyio context managers that must be entered and
    exited by the same task, while the proxy opens the link in one request
    and releases it from another. The keeper task owns both contexts and
    waits on a stop event; calls go through the shared `ClientSession`.
    """

    def __init__(
        self,
        url: str,
        auth: Optional[AuthProvider] = None,
        transport: str = TRANSPORT_SSE,
        timeout: float = 30.0,
        call_timeout: float = 120.0,
        client_name: str = "mcp-schema-proxy",
    ):
        if transport not in TRANSPORTS:
            raise ValueError(f"Unknown upstream transport: {transport}")
        self.url = url
        self.auth = auth
        self.transport = transport
        self.timeout = float(timeout)
        self.call_timeout = float(call_timeout)
        self.client_info = Implementation(name=client_name, version=__version__)

        self._session: Optional[ClientSession] = None
        self._keeper: Optional[asyncio.Task] = None
        self._stop: Optional[asyncio.Event] = None

    def _open_transport(self):
        headers = self.auth.get_headers() if self.auth else {}
        if self.transport == TRANSPORT_STREAMABLE_HTTP:
            return streamablehttp_client(self.url, headers=headers, timeout=timedelta(seconds=self.timeout))
        return sse_client(self.url, headers=headers, timeout=self.timeout)

    async def connect(self) -> None:
        if self._keeper is not None:
            raise RuntimeError("Upstream client already connected")

        ready = asyncio.Event()
        failure: List[BaseException] = []
        self._stop = asyncio.Event()

        async def _keep_connection():
            try:
                async with self._open_transport() as streams:
                    read_stream, write_stream = streams[0], streams[1]
                    async with ClientSession(read_stream, write_stream, client_info=self.client_info) as session:
                        init_result = await asyncio.wait_for(session.initialize(), timeout=self.timeout)
                        if init_result.serverInfo:
                            logger.debug(
                                f"Upstream server: {init_result.serverInfo.name} {init_result.serverInfo.version}")
                        self._session = session
                        ready.set()
                        await self._stop.wait()
            except Exception as e:
                failure.append(e)
                if ready.is_set():
                    logger.warning(f"Upstream connection to {self.url} dropped: {_error_text(e)}")
            finally:
                self._session = None
                ready.set()

        self._keeper = asyncio.create_task(_keep_connection(), name="mcp-upstream-keeper")
        try:
            await ready.wait()
        except asyncio.CancelledError:
            self._keeper.cancel()
            raise

        if self._session is None:
            await self._keeper
            self._keeper = None
            reason = _error_text(failure[0]) if failure else "connection closed during handshake"
            raise ConnectionError(reason)

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise ConnectionError("Upstream connection is not open")
        return self._session

    async def list_tools(self, cursor: Optional[str] = None) -> Dict[str, Any]:
        session = self._require_session()
        if cursor:
            result = await asyncio.wait_for(session.list_tools(cursor=cursor), timeout=self.timeout)
        else:
            result = await asyncio.wait_for(session.list_tools(), timeout=self.timeout)
        return result.model_dump(mode="json", by_alias=True, exclude_unset=True)

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        session = self._require_session()
        result = await asyncio.wait_for(session.call_tool(name, arguments), timeout=self.call_timeout)
        return result.model_dump(mode="json", by_alias=True, exclude_unset=True)

    async def close(self) -> None:
        keeper, self._keeper = self._keeper, None
        if keeper is None:
            return
        if self._stop is not None:
            self._stop.set()
        try:
            await asyncio.wait_for(keeper, timeout=5.0)
        except asyncio.TimeoutError:
            keeper.cancel()
            logger.warning(f"Upstream connection to {self.url} did not close cleanly")


class UpstreamSession:
    """One logical upstream link; all failures surface as `UpstreamError`."""

    def __init__(self, client: UpstreamClient, max_pages: int = MAX_TOOL_PAGES):
        self.client = client
        self.max_pages = max(1, int(max_pages))
        self._closed = False

    async def connect(self) -> None:
        try:
            await self.client.connect()
        except Exception as e:
            raise UpstreamError(f"Upstream handshake failed: {_error_text(e)}") from e

    async def list_tools(self) -> List[Any]:
        """Every upstream tool, following `nextCursor` across pages."""
        tools: List[Any] = []
        cursor: Optional[str] = None
        try:
            for _ in range(self.max_pages):
                page = await self.client.list_tools(cursor)
                batch = page.get("tools", []) if isinstance(page, dict) else []
                if isinstance(batch, list):
                    tools.extend(batch)
                next_cursor = page.get("nextCursor") if isinstance(page, dict) else None
                if not next_cursor:
                    break
                cursor = str(next_cursor)
            else:
                logger.warning(f"tools/list stopped after {self.max_pages} pages")
        except Exception as e:
            raise UpstreamError(_error_text(e)) from e
        return tools

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        try:
            return await self.client.call_tool(name, arguments)
        except Exception as e:
            raise UpstreamError(_error_text(e)) from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.client.close()
        except Exception as e:
            logger.warning(f"Error closing upstream client: {_error_text(e)}")
