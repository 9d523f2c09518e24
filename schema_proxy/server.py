"""
Schema Proxy Server
FastAPI application speaking the MCP SSE transport to clients.

ENDPOINTS:
- GET  /sse      opens a client stream and its upstream session
- POST /message  accepts JSON-RPC requests for a stream (?clientId=...)
- GET  /health   liveness and active session count
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

import anyio
import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from .auth import BearerTokenAuth
from .config import ProxyConfig
from .errors import ProxyError, UpstreamError
from .registry import SessionRegistry, UpstreamFactory
from .router import RequestRouter
from .session import Session
from .upstream import MCPUpstreamClient, UpstreamSession
from .version import __version__


logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def sse_event(data: str, event: Optional[str] = None) -> str:
    lines = [f"event: {event}"] if event else []
    lines.extend(f"data: {line}" for line in data.split("\n"))
    return "\n".join(lines) + "\n\n"


class ProxyServer:
    def __init__(self, config: ProxyConfig, upstream_factory: Optional[UpstreamFactory] = None):
        self.config = config
        self.registry = SessionRegistry(upstream_factory or self._build_upstream)
        self.router = RequestRouter(self.registry)
        self.app = FastAPI(title="MCP Schema Proxy", version=__version__)
        self.app.add_middleware(
            CORSMiddleware, allow_origins=config.cors_origins,
            allow_methods=["GET", "POST", "OPTIONS"], allow_headers=["*"],
        )

        @self.app.exception_handler(ProxyError)
        async def proxy_error_handler(request: Request, exc: ProxyError):
            return JSONResponse(exc.to_jsonrpc(), status_code=exc.http_status)

        self._setup_routes()

    def _build_upstream(self, session_id: str) -> UpstreamSession:
        client = MCPUpstreamClient(
            self.config.upstream_url,
            auth=BearerTokenAuth(self.config.upstream_api_key),
            transport=self.config.upstream_transport,
            timeout=self.config.upstream_timeout,
            call_timeout=self.config.upstream_call_timeout,
            client_name=self.config.server_name,
        )
        return UpstreamSession(client)

    def initialize_message(self) -> Dict[str, Any]:
        """Stand-in for the upstream's initialize result."""
        return {
            "jsonrpc": "2.0",
            "id": 0,
            "result": {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "serverInfo": {"name": self.config.server_name, "version": __version__},
            },
        }

    async def event_stream(self, request: Request, session: Session) -> AsyncIterator[str]:
        """
        SSE frames for one client.

        The session is removed from the registry when the stream ends for any
        reason, including client disconnects.
        """
        try:
            yield sse_event(f"/message?clientId={session.id}", event="endpoint")
            yield sse_event(json.dumps(self.initialize_message()), event="message")
            while True:
                try:
                    data = await session.channel.receive(timeout=self.config.keepalive_interval)
                except asyncio.TimeoutError:
                    if await request.is_disconnected():
                        break
                    yield ": keepalive\n\n"
                    continue
                if data is None:
                    break
                yield sse_event(data, event="message")
        finally:
            with anyio.CancelScope(shield=True):
                await self.registry.remove(session.id)

    def _setup_routes(self):

        @self.app.get("/sse")
        async def sse_endpoint(request: Request):
            try:
                session = await self.registry.create()
            except UpstreamError as e:
                logger.error(f"Failed to connect client to upstream: {e.message}")
                raise
            return StreamingResponse(
                self.event_stream(request, session),
                media_type="text/event-stream",
                headers=SSE_HEADERS,
            )

        @self.app.post("/message", status_code=202)
        async def message_endpoint(request: Request, client_id: Optional[str] = Query(None, alias="clientId")):
            try:
                message = await request.json()
            except ValueError:
                message = None
            ack = await self.router.handle(client_id, message)
            return JSONResponse(ack, status_code=202)

        @self.app.get("/health")
        async def health():
            return {
                "status": "healthy",
                "connections": len(self.registry),
                "upstreamUrl": self.config.upstream_url,
            }


async def run_server(config: ProxyConfig, verbose: bool = False):
    proxy = ProxyServer(config)

    logger.info(f"MCP schema proxy running on port {config.port}")
    logger.info(f"Forwarding to: {config.upstream_url} ({config.upstream_transport})")
    logger.info(f"SSE endpoint: http://localhost:{config.port}/sse")
    logger.info(f"Health check: http://localhost:{config.port}/health")

    uv_config = uvicorn.Config(proxy.app, host=config.host, port=config.port,
                               log_level="info" if verbose else "warning",
                               log_config=None, access_log=False)
    srv = uvicorn.Server(uv_config)
    try:
        await srv.serve()
    finally:
        await proxy.registry.close_all()
