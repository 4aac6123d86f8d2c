"""FastAPI dependencies — shared services off app.state."""

from typing import AsyncIterator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskwire.broadcast.registry import BroadcastRegistry
from taskwire.cache.task_cache import TaskStatusCache
from taskwire.messaging.base import MessageProducer


def get_services(request: Request):
    return request.app.state.services


async def get_db(services=Depends(get_services)) -> AsyncIterator[AsyncSession]:
    """Yields a session per request, auto-closes."""
    async with services.session_factory() as session:
        yield session


def get_cache(services=Depends(get_services)) -> TaskStatusCache:
    return services.cache


def get_registry(services=Depends(get_services)) -> BroadcastRegistry:
    return services.registry


def require_producer(services=Depends(get_services)) -> MessageProducer:
    """503 when messaging is disabled (MESSAGE_BROKER unset)."""
    if services.producer is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Message broker is not configured",
        )
    return services.producer
