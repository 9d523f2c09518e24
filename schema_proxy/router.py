"""
JSON-RPC Request Router
Validates inbound client messages and dispatches the mediated MCP methods.

Validation failures are raised straight back to the caller of the message
endpoint. Once a message is accepted its upstream call runs in the
background and the result, or a JSON-RPC error, goes out over the
session's SSE stream.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from .errors import (
    JSONRPC_INTERNAL_ERROR,
    JSONRPC_INVALID_PARAMS,
    MalformedInputError,
    ProxyError,
    UnimplementedMethodError,
)
from .normalizer import normalize_tools_list_response
from .registry import SessionRegistry
from .session import Session


logger = logging.getLogger(__name__)

ACCEPTED = {"status": "accepted"}

Handler = Callable[[Session, Any, Dict[str, Any]], Awaitable[Dict[str, Any]]]


def jsonrpc_result(request_id: Any, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def jsonrpc_error(request_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


class RequestRouter:
    """Routes `/message` posts to the right session and method handler."""

    def __init__(self, registry: SessionRegistry):
        self.registry = registry
        self._handlers: Dict[str, Handler] = {
            "tools/list": self._tools_list,
            "tools/call": self._tools_call,
        }

    async def handle(self, client_id: Optional[str], message: Any) -> Dict[str, Any]:
        """
        Accept one inbound JSON-RPC message.

        Returns the acknowledgment body. Raises `ProxyError` subclasses for
        everything rejected before dispatch.
        """
        if not client_id:
            raise MalformedInputError("Missing clientId parameter")

        session = self.registry.get(client_id)

        if not isinstance(message, dict):
            raise MalformedInputError("Invalid JSON-RPC message")

        request_id = message.get("id")
        method = message.get("method")
        if method is None or method == "":
            raise MalformedInputError("Missing method field", request_id=request_id)
        if not isinstance(method, str):
            raise MalformedInputError("Invalid method field", request_id=request_id)

        handler = self._handlers.get(method)
        if handler is None:
            logger.info(f"Unhandled method: {method}")
            raise UnimplementedMethodError(f"Method not implemented: {method}", request_id=request_id)

        params = self._validate_params(method, message.get("params"), request_id)

        if session.earliest_pending(request_id) is not None:
            logger.warning(f"Client {session.id} reused in-flight request id {request_id!r}")

        async def respond() -> Dict[str, Any]:
            return await self._execute(session, request_id, method, handler, params)

        await session.submit(request_id, method, respond)
        return dict(ACCEPTED)

    def _validate_params(self, method: str, params: Any, request_id: Any) -> Dict[str, Any]:
        if method != "tools/call":
            return params if isinstance(params, dict) else {}

        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise MalformedInputError(
                "Invalid params: expected an object", request_id=request_id, code=JSONRPC_INVALID_PARAMS)
        if not isinstance(params.get("name"), str):
            raise MalformedInputError(
                "Invalid params: tools/call requires a string 'name'",
                request_id=request_id, code=JSONRPC_INVALID_PARAMS)
        arguments = params.get("arguments")
        if arguments is not None and not isinstance(arguments, dict):
            raise MalformedInputError(
                "Invalid params: 'arguments' must be an object",
                request_id=request_id, code=JSONRPC_INVALID_PARAMS)
        return params

    async def _execute(
        self, session: Session, request_id: Any, method: str,
        handler: Handler, params: Dict[str, Any],
    ) -> Dict[str, Any]:
        try:
            return await handler(session, request_id, params)
        except Exception as e:
            text = e.message if isinstance(e, ProxyError) else (str(e) or type(e).__name__)
            logger.error(f"Error handling {method} for client {session.id}: {text}")
            return jsonrpc_error(request_id, JSONRPC_INTERNAL_ERROR, f"Internal error: {text}")

    async def _tools_list(self, session: Session, request_id: Any, params: Dict[str, Any]) -> Dict[str, Any]:
        # Client paging params are ignored; the full upstream catalog is returned
        tools = await session.upstream.list_tools()
        return normalize_tools_list_response(jsonrpc_result(request_id, {"tools": tools}))

    async def _tools_call(self, session: Session, request_id: Any, params: Dict[str, Any]) -> Dict[str, Any]:
        result = await session.upstream.call_tool(params["name"], params.get("arguments"))
        return jsonrpc_result(request_id, result)
