"""
Upstream Authentication
Header providers attached to the upstream MCP connection.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional


class AuthProvider(ABC):
    """Abstract base class for upstream authentication."""

    @abstractmethod
    def get_headers(self) -> Dict[str, str]:
        """Headers sent when the upstream connection is opened."""
        raise NotImplementedError


class StaticHeadersAuth(AuthProvider):
    """Fixed headers (API keys)."""

    def __init__(self, headers: Optional[Dict[str, str]] = None):
        self._headers = dict(headers or {})

    def get_headers(self) -> Dict[str, str]:
        return dict(self._headers)


class BearerTokenAuth(StaticHeadersAuth):
    """`Authorization: Bearer <token>`; the token is never shown in repr."""

    def __init__(self, token: str):
        token = (token or "").strip()
        if not token:
            raise ValueError("Bearer token cannot be empty")
        super().__init__({"Authorization": f"Bearer {token}"})

    def __repr__(self) -> str:
        return "BearerTokenAuth(token=***)"
