"""
Proxy Error Taxonomy
Every error carries the JSON-RPC code and HTTP status it is reported with.
"""

from typing import Any, Dict, Optional

JSONRPC_INVALID_REQUEST = -32600
JSONRPC_METHOD_NOT_FOUND = -32601
JSONRPC_INVALID_PARAMS = -32602
JSONRPC_INTERNAL_ERROR = -32603


class ProxyError(Exception):
    """Base class for errors reported to MCP clients."""

    code: int = JSONRPC_INTERNAL_ERROR
    http_status: int = 500

    def __init__(
        self,
        message: str,
        request_id: Any = None,
        code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.request_id = request_id
        if code is not None:
            self.code = code

    def to_jsonrpc(self) -> Dict[str, Any]:
        """Render as a JSON-RPC 2.0 error response."""
        return {
            "jsonrpc": "2.0",
            "error": {"code": self.code, "message": self.message},
            "id": self.request_id,
        }


class MalformedInputError(ProxyError):
    """Inbound message is not a usable JSON-RPC request."""

    code = JSONRPC_INVALID_REQUEST
    http_status = 400


class MalformedToolError(MalformedInputError):
    """Upstream tool entry is not an object or has no string name."""


class SessionNotFoundError(ProxyError):
    code = JSONRPC_INVALID_REQUEST
    http_status = 404


class UnimplementedMethodError(ProxyError):
    code = JSONRPC_METHOD_NOT_FOUND
    http_status = 501


class UpstreamError(ProxyError):
    """Handshake or call against the upstream MCP server failed."""

    code = JSONRPC_INTERNAL_ERROR
    http_status = 500
