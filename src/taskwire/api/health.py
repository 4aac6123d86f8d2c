"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running and its
dependencies (database, Redis cache) are reachable. The broker is
reported as "disabled" when MESSAGE_BROKER is unset; that alone does not
degrade the status.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text

from taskwire import __version__
from taskwire.api.deps import get_services

router = APIRouter()


@router.get("/health")
async def health_check(services=Depends(get_services)):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    try:
        async with services.session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    checks["cache"] = "ok" if await services.cache.ping() else "error: unreachable"
    checks["broker"] = services.producer.broker_type if services.producer else "disabled"

    status = "healthy" if all(
        checks[k] == "ok" for k in ("server", "database", "cache")
    ) else "degraded"

    return {"status": status, **checks}
