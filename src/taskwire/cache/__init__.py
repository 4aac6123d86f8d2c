"""Redis-backed task status snapshots."""

from taskwire.cache.task_cache import STATUS_TTL_SECONDS, CacheError, TaskStatusCache, status_key

__all__ = ["STATUS_TTL_SECONDS", "CacheError", "TaskStatusCache", "status_key"]
