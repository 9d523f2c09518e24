"""
Client Sessions
Per-client state: upstream link, outbound SSE channel and pending requests.
"""

import asyncio
import json
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .upstream import UpstreamSession


logger = logging.getLogger(__name__)

_CLOSED = object()


@dataclass(eq=False)
class PendingRequest:
    """A mediated request whose result has not been delivered yet."""
    request_id: Any
    method: str
    task: Optional[asyncio.Task] = None


def _request_key(request_id: Any) -> Tuple[str, Any]:
    # 1, 1.0 and True hash alike in Python but are distinct JSON-RPC ids
    return (type(request_id).__name__, request_id)


class OutboundChannel:
    """
    Ordered queue of JSON-RPC messages for one SSE stream.

    Messages sent after `close()` are dropped; the stream ends once the
    queued messages are drained.
    """

    def __init__(self):
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, message: Dict[str, Any]) -> bool:
        async with self._lock:
            if self._closed:
                return False
            self._queue.put_nowait(json.dumps(message, separators=(",", ":"), ensure_ascii=False))
            return True

    def close(self):
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    async def receive(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Next serialized message.

        Returns None once the channel is closed; raises `asyncio.TimeoutError`
        when nothing arrives within `timeout`.
        """
        item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            return None
        return item


class Session:
    """Binding of one SSE client connection to one upstream link."""

    def __init__(self, session_id: str, upstream: UpstreamSession):
        self.id = session_id
        self.upstream = upstream
        self.channel = OutboundChannel()
        self._pending: "OrderedDict[Tuple[str, Any], List[PendingRequest]]" = OrderedDict()
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def pending_count(self) -> int:
        return sum(len(entries) for entries in self._pending.values())

    def pending_ids(self) -> List[Any]:
        return [entry.request_id for entries in self._pending.values() for entry in entries]

    async def send(self, message: Dict[str, Any]) -> bool:
        """Queue a message for the client; False if the session is gone."""
        if self._closed:
            return False
        return await self.channel.send(message)

    async def submit(
        self,
        request_id: Any,
        method: str,
        action: Callable[[], Awaitable[Dict[str, Any]]],
    ) -> PendingRequest:
        """
        Run `action` in the background and deliver its message.

        `action` returns the complete JSON-RPC response to send. The request
        stays in the pending map until that response is delivered or the
        session closes.
        """
        if self._closed:
            raise RuntimeError(f"Session {self.id} is closed")

        entry = PendingRequest(request_id=request_id, method=method)

        async def _run():
            try:
                message = await action()
                delivered = await self.send(message)
                if not delivered:
                    logger.debug(f"Discarded {method} response for closed session {self.id}")
            finally:
                await self._resolve(entry)

        async with self._lock:
            self._pending.setdefault(_request_key(request_id), []).append(entry)
            entry.task = asyncio.create_task(_run(), name=f"{self.id}:{method}")
        return entry

    async def _resolve(self, entry: PendingRequest):
        async with self._lock:
            key = _request_key(entry.request_id)
            entries = self._pending.get(key)
            if not entries:
                return
            try:
                entries.remove(entry)
            except ValueError:
                return
            if not entries:
                del self._pending[key]

    def earliest_pending(self, request_id: Any) -> Optional[PendingRequest]:
        """Oldest unresolved request registered under `request_id`."""
        entries = self._pending.get(_request_key(request_id))
        return entries[0] if entries else None

    async def close(self):
        """Cancel pending work, end the stream and release the upstream link."""
        if self._closed:
            return
        self._closed = True
        self.channel.close()

        pending = self.pending_ids()
        if pending:
            logger.info(f"Session {self.id} closing with {len(pending)} pending request(s): {pending}")

        async with self._lock:
            tasks = [e.task for entries in self._pending.values() for e in entries if e.task]
            self._pending.clear()

        current = asyncio.current_task()
        for task in tasks:
            if task is not current and not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*(t for t in tasks if t is not current), return_exceptions=True)

        await self.upstream.close()
