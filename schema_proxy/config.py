"""
Proxy Configuration
Settings come from the environment (optionally a `.env` file).
"""

import os
from dataclasses import dataclass, field, replace
from typing import Any, List, Mapping, Optional

from dotenv import load_dotenv

from .upstream import TRANSPORT_SSE, TRANSPORTS

DEFAULT_UPSTREAM_URL = "https://api.polar.sh/mcp/sse"
DEFAULT_PORT = 3001


class ConfigError(ValueError):
    pass


@dataclass
class ProxyConfig:
    """Configuration for the schema proxy."""

    upstream_api_key: str
    upstream_url: str = DEFAULT_UPSTREAM_URL
    upstream_transport: str = TRANSPORT_SSE
    upstream_timeout: float = 30.0
    upstream_call_timeout: float = 120.0
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    keepalive_interval: float = 15.0
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    server_name: str = "mcp-schema-proxy"

    def __post_init__(self):
        if not (self.upstream_api_key or "").strip():
            raise ConfigError("MCP_UPSTREAM_API_KEY environment variable is required")
        if not (self.upstream_url or "").strip():
            raise ConfigError("MCP_UPSTREAM_URL cannot be empty")
        if self.upstream_transport not in TRANSPORTS:
            raise ConfigError(
                f"Unknown upstream transport '{self.upstream_transport}' "
                f"(expected one of: {', '.join(TRANSPORTS)})")
        if not 0 < self.port < 65536:
            raise ConfigError(f"Invalid port: {self.port}")
        for name, value in (
            ("MCP_UPSTREAM_TIMEOUT", self.upstream_timeout),
            ("MCP_UPSTREAM_CALL_TIMEOUT", self.upstream_call_timeout),
            ("PROXY_KEEPALIVE", self.keepalive_interval),
        ):
            if not value > 0:
                raise ConfigError(f"{name} must be greater than zero, got {value}")

    def with_overrides(self, **overrides: Any) -> "ProxyConfig":
        """Copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def __repr__(self) -> str:
        return (f"ProxyConfig(upstream_url={self.upstream_url!r}, "
                f"upstream_transport={self.upstream_transport!r}, "
                f"host={self.host!r}, port={self.port})")


def _number(env: Mapping[str, str], name: str, default: float, cast=float):
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got '{raw}'") from None


def load_config(env: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> ProxyConfig:
    """
    Build a `ProxyConfig` from environment variables.

    Args:
        env: Mapping to read instead of `os.environ`
        dotenv: Load a `.env` file into the process environment first

    Raises:
        ConfigError: Missing credential or invalid values
    """
    if env is None:
        if dotenv:
            load_dotenv()
        env = os.environ

    origins = [o.strip() for o in env.get("PROXY_CORS_ORIGINS", "*").split(",") if o.strip()]

    return ProxyConfig(
        upstream_api_key=env.get("MCP_UPSTREAM_API_KEY", "").strip(),
        upstream_url=env.get("MCP_UPSTREAM_URL", DEFAULT_UPSTREAM_URL).strip(),
        upstream_transport=env.get("MCP_UPSTREAM_TRANSPORT", TRANSPORT_SSE).strip().lower(),
        upstream_timeout=_number(env, "MCP_UPSTREAM_TIMEOUT", 30.0),
        upstream_call_timeout=_number(env, "MCP_UPSTREAM_CALL_TIMEOUT", 120.0),
        host=env.get("PROXY_HOST", "0.0.0.0").strip() or "0.0.0.0",
        port=_number(env, "PROXY_PORT", DEFAULT_PORT, cast=int),
        keepalive_interval=_number(env, "PROXY_KEEPALIVE", 15.0),
        cors_origins=origins or ["*"],
    )
