"""
Session Registry
Single owner of every live client session.
"""

import logging
import secrets
import threading
import time
from typing import Callable, Dict, List, Optional, Set

from .errors import SessionNotFoundError
from .session import Session
from .upstream import UpstreamSession


logger = logging.getLogger(__name__)

UpstreamFactory = Callable[[str], UpstreamSession]


def generate_session_id() -> str:
    """Millisecond timestamp plus a random suffix."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(6)}"


class SessionRegistry:
    """
    Maps client ids to sessions.

    Sessions are looked up per request and never handed out for longer than
    that. The map itself is guarded by a lock and never exposed.
    """

    def __init__(self, upstream_factory: UpstreamFactory):
        self._upstream_factory = upstream_factory
        self._sessions: Dict[str, Session] = {}
        # Ids drawn in the current millisecond; earlier ones differ by prefix
        self._window_ms: Optional[str] = None
        self._window_ids: Set[str] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def _reserve_id(self) -> str:
        with self._lock:
            while True:
                session_id = generate_session_id()
                prefix = session_id.split("-", 1)[0]
                if prefix != self._window_ms:
                    self._window_ms = prefix
                    self._window_ids = set()
                if session_id not in self._window_ids and session_id not in self._sessions:
                    break
            self._window_ids.add(session_id)
            return session_id

    async def create(self) -> Session:
        """
        Open an upstream link and register a new session for it.

        Raises `UpstreamError` when the upstream handshake fails; nothing is
        registered in that case.
        """
        session_id = self._reserve_id()
        upstream = self._upstream_factory(session_id)
        try:
            await upstream.connect()
        except BaseException:
            await upstream.close()
            raise

        session = Session(session_id, upstream)
        with self._lock:
            self._sessions[session_id] = session
        logger.info(f"Session {session_id} connected to upstream")
        return session

    def find(self, session_id: Optional[str]) -> Optional[Session]:
        if not session_id:
            return None
        with self._lock:
            return self._sessions.get(session_id)

    def get(self, session_id: Optional[str]) -> Session:
        session = self.find(session_id)
        if session is None:
            raise SessionNotFoundError("Client not found")
        return session

    async def remove(self, session_id: str) -> None:
        """Drop a session and release its upstream link. Unknown ids are ignored."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return
        await session.close()
        logger.info(f"Session {session_id} disconnected")

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    async def close_all(self) -> None:
        for session_id in self.ids():
            await self.remove(session_id)
