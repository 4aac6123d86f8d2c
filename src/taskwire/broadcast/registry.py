"""Broadcast registry — maps a correlation key to one live WebSocket outbox.

Learn: the forwarder never touches sockets. It looks up the key carried by
a broadcast (a task id, or "user-{id}" for the legacy user routes) and
drops the message into that connection's Outbox. The WebSocket handler owns
the other end of the outbox and does the actual write.

At most one connection per key: registering again replaces the old outbox
without telling the old connection. Unregistering with the outbox you
registered only removes it if it is still the current one, so a connection
that closes late cannot evict its replacement.

The key map is guarded by a threading.Lock and Outbox.put hops loops via
call_soon_threadsafe, so sends are safe from any thread (Starlette's
TestClient runs the app on its own loop in a worker thread).
"""

import asyncio
import threading
from typing import Any, Optional

import structlog
from pydantic import BaseModel

logger = structlog.get_logger()


class BroadcastMessage(BaseModel):
    """Realtime envelope relayed to WebSocket clients."""

    event_type: str
    data: Any = None


class Outbox:
    """Unbounded, non-blocking send half for one WebSocket connection."""

    def __init__(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue[BroadcastMessage] = asyncio.Queue()

    def put(self, message: BroadcastMessage) -> bool:
        """Enqueue without blocking. Returns False if the owning loop is gone."""
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._queue.put_nowait(message)
            return True
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, message)
        except RuntimeError:
            # Owning loop already closed
            return False
        return True

    async def get(self) -> BroadcastMessage:
        return await self._queue.get()

    def qsize(self) -> int:
        return self._queue.qsize()


def user_key(user_id: int) -> str:
    return f"user-{user_id}"


class BroadcastRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._outboxes: dict[str, Outbox] = {}

    def register(self, key: str, outbox: Outbox) -> None:
        with self._lock:
            replaced = key in self._outboxes
            self._outboxes[key] = outbox
        logger.info("broadcast.registered", key=key, replaced=replaced)

    def unregister(self, key: str, outbox: Optional[Outbox] = None) -> None:
        with self._lock:
            current = self._outboxes.get(key)
            if current is None:
                return
            if outbox is not None and current is not outbox:
                return
            del self._outboxes[key]
        logger.info("broadcast.unregistered", key=key)

    def send_to(self, key: str, message: BroadcastMessage) -> bool:
        """Deliver to `key`. Returns False when nobody is registered under it."""
        with self._lock:
            outbox = self._outboxes.get(key)
        if outbox is None:
            return False
        return outbox.put(message)

    def send_to_all(self, message: BroadcastMessage) -> int:
        with self._lock:
            outboxes = list(self._outboxes.values())
        return sum(1 for outbox in outboxes if outbox.put(message))

    # Legacy per-user routing

    def register_user(self, user_id: int, outbox: Outbox) -> None:
        self.register(user_key(user_id), outbox)

    def unregister_user(self, user_id: int, outbox: Optional[Outbox] = None) -> None:
        self.unregister(user_key(user_id), outbox)

    def send_to_user(self, user_id: int, message: BroadcastMessage) -> bool:
        return self.send_to(user_key(user_id), message)

    def clear(self) -> None:
        with self._lock:
            self._outboxes.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._outboxes)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._outboxes
