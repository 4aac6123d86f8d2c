"""API route aggregation.

All routers registered here get mounted in main.py under /api/v1.
"""

from fastapi import APIRouter

from taskwire.api.health import router as health_router
from taskwire.api.tasks import router as tasks_router
from taskwire.api.users import router as users_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(users_router, tags=["users"])
api_router.include_router(tasks_router, tags=["tasks"])
