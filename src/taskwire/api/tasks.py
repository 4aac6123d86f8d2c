"""Task status lookup — the polling counterpart to /ws/task/{task_id}."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from taskwire.api.deps import get_cache
from taskwire.cache.task_cache import CacheError, TaskStatusCache

logger = structlog.get_logger()
router = APIRouter()


@router.get("/tasks/{task_id}/status")
async def get_task_status(task_id: str, cache: TaskStatusCache = Depends(get_cache)) -> Any:
    """Last cached progress snapshot. Expired, unknown or unreadable → 404."""
    try:
        snapshot = await cache.get_status(task_id)
    except CacheError as e:
        logger.warning("api.task_status_unavailable", task_id=task_id, error=str(e))
        snapshot = None
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task status not found")
    return snapshot
