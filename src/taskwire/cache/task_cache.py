"""Task status cache — last known progress snapshot per task, in Redis.

Learn: broadcasts are fire-and-forget, so a client that opens its
WebSocket after a task started would otherwise see nothing until the next
stage. Every stage also writes its snapshot here with a one-hour TTL and
the WebSocket handler replays it on connect.

The cache always uses REDIS_URL, whatever broker carries the tasks.
"""

import json
from typing import Any, Optional

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

logger = structlog.get_logger()

STATUS_TTL_SECONDS = 3600


class CacheError(Exception):
    pass


def status_key(task_id: str) -> str:
    return f"task:status:{task_id}"


class TaskStatusCache:
    def __init__(self, client: aioredis.Redis, ttl: int = STATUS_TTL_SECONDS):
        self._client = client
        self.ttl = ttl

    @classmethod
    def from_url(cls, url: str) -> "TaskStatusCache":
        """Lazy client; nothing touches the network until the first call."""
        return cls(aioredis.from_url(url, encoding="utf-8", decode_responses=True))

    async def cache_status(self, task_id: str, value: Any) -> None:
        """Store `value` as JSON. The TTL is reset on every write."""
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise CacheError(f"Status for task {task_id} is not JSON serializable: {e}") from e
        try:
            await self._client.set(status_key(task_id), payload, ex=self.ttl)
        except RedisError as e:
            raise CacheError(f"Failed to cache status for task {task_id}: {e}") from e

    async def get_status(self, task_id: str) -> Optional[Any]:
        try:
            raw = await self._client.get(status_key(task_id))
        except RedisError as e:
            raise CacheError(f"Failed to read status for task {task_id}: {e}") from e
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            raise CacheError(f"Corrupt status for task {task_id}: {e}") from e

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError):
            return False

    async def close(self) -> None:
        await self._client.aclose()
