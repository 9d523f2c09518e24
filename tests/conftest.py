import asyncio
from typing import Any, Dict, List, Optional

import pytest

from schema_proxy.upstream import UpstreamClient, UpstreamSession


class FakeUpstreamClient(UpstreamClient):
    """In-memory stand-in for an upstream MCP server."""

    def __init__(
        self,
        pages: Optional[List[Dict[str, Any]]] = None,
        call_result: Optional[Dict[str, Any]] = None,
        connect_error: Optional[Exception] = None,
        list_error: Optional[Exception] = None,
        call_error: Optional[Exception] = None,
    ):
        self.pages = pages if pages is not None else [{"tools": []}]
        self.call_result = call_result if call_result is not None else {"content": []}
        self.connect_error = connect_error
        self.list_error = list_error
        self.call_error = call_error
        self.gate: Optional[asyncio.Event] = None
        self.connected = False
        self.closed = False
        self.cursors: List[Optional[str]] = []
        self.calls: List[tuple] = []

    async def connect(self) -> None:
        if self.connect_error:
            raise self.connect_error
        self.connected = True

    async def list_tools(self, cursor: Optional[str] = None) -> Dict[str, Any]:
        self.cursors.append(cursor)
        if self.list_error:
            raise self.list_error
        return self.pages[len(self.cursors) - 1]

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self.calls.append((name, arguments))
        if self.gate is not None:
            await self.gate.wait()
        if self.call_error:
            raise self.call_error
        return self.call_result

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_upstream():
    """Factory for registries: returns (factory, created_clients)."""
    created: List[FakeUpstreamClient] = []
    options: Dict[str, Any] = {}

    def factory(session_id: str) -> UpstreamSession:
        client = FakeUpstreamClient(**options)
        created.append(client)
        return UpstreamSession(client)

    factory.options = options
    return factory, created
