"""
MCP Schema Proxy
SSE proxy that repairs malformed tool input schemas from an upstream MCP server.
"""

from .version import __version__

# Schema normalization
from .normalizer import (
    ToolDescriptor,
    normalize_input_schema,
    normalize_tool,
    normalize_tools,
    normalize_tools_list_response,
    schema_needs_normalization,
)

# Errors
from .errors import (
    ProxyError,
    MalformedInputError,
    MalformedToolError,
    SessionNotFoundError,
    UnimplementedMethodError,
    UpstreamError,
)

# Sessions and routing
from .upstream import UpstreamClient, MCPUpstreamClient, UpstreamSession
from .session import Session, PendingRequest
from .registry import SessionRegistry
from .router import RequestRouter

# Server
from .config import ProxyConfig, ConfigError, load_config
from .server import ProxyServer, run_server

__all__ = [
    '__version__',

    # Normalization
    'ToolDescriptor',
    'normalize_input_schema',
    'normalize_tool',
    'normalize_tools',
    'normalize_tools_list_response',
    'schema_needs_normalization',

    # Errors
    'ProxyError',
    'MalformedInputError',
    'MalformedToolError',
    'SessionNotFoundError',
    'UnimplementedMethodError',
    'UpstreamError',

    # Sessions
    'UpstreamClient',
    'MCPUpstreamClient',
    'UpstreamSession',
    'Session',
    'PendingRequest',
    'SessionRegistry',
    'RequestRouter',

    # Server
    'ProxyConfig',
    'ConfigError',
    'load_config',
    'ProxyServer',
    'run_server',
]
