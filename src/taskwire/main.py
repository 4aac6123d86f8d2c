"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown of the shared services:

- BroadcastRegistry: task_id → live WebSocket outbox
- MessageProducer: optional; None when MESSAGE_BROKER is unset
- TaskStatusCache: Redis snapshots for late WebSocket joiners
- the broadcast forwarder task, relaying `broadcasts` into the registry

Services hang off app.state.services; routes pull them through the
dependencies in taskwire.api.deps. Tests hand create_app() a prebuilt
AppServices so nothing touches a real broker.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from taskwire import __version__
from taskwire.api import api_router
from taskwire.broadcast.forwarder import (
    MessageForwarder,
    close_quietly,
    create_forwarder,
    run_forwarder_supervised,
)
from taskwire.broadcast.registry import BroadcastRegistry
from taskwire.cache.task_cache import TaskStatusCache
from taskwire.config import settings
from taskwire.db.engine import SessionFactory, create_session_factory
from taskwire.messaging.base import MessageProducer
from taskwire.messaging.config import ForwarderConfig
from taskwire.messaging.factory import create_producer

logger = structlog.get_logger()


@dataclass
class AppServices:
    registry: BroadcastRegistry
    session_factory: SessionFactory
    cache: TaskStatusCache
    producer: Optional[MessageProducer] = None
    forwarder_config: Optional[ForwarderConfig] = None


async def build_services() -> AppServices:
    """Build services from settings. Broker setup errors propagate."""
    producer = None
    producer_config = settings.to_producer_config()
    if producer_config is not None:
        producer = await create_producer(producer_config)
        logger.info("taskwire.producer_ready", broker=producer.broker_type)
    else:
        logger.warning("taskwire.messaging_disabled")

    return AppServices(
        registry=BroadcastRegistry(),
        session_factory=create_session_factory(settings.database_url, echo=settings.debug),
        cache=TaskStatusCache.from_url(settings.redis_url),
        producer=producer,
        forwarder_config=settings.to_forwarder_config(),
    )


async def close_services(services: AppServices) -> None:
    if services.producer is not None:
        await services.producer.close()
    await services.cache.close()
    engine = services.session_factory.kw.get("bind")
    if engine is not None:
        await engine.dispose()


async def start_forwarder(services: AppServices) -> tuple[Optional[asyncio.Task], Optional[MessageForwarder]]:
    """Start relaying broadcasts. Unsupervised setup errors are fatal."""
    config = services.forwarder_config
    if config is None:
        return None, None
    if settings.forwarder_supervised:
        task = asyncio.create_task(run_forwarder_supervised(config, services.registry))
        return task, None
    forwarder = await create_forwarder(config, services.registry)
    return asyncio.create_task(forwarder.start_forwarding()), forwarder


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. Services passed in by the caller are not closed here.
    """
    logger.info(
        "taskwire.starting",
        version=__version__,
        environment=settings.environment,
        broker=settings.message_broker.value if settings.message_broker else None,
    )

    provided = app.state.services
    services = provided or await build_services()
    app.state.services = services

    forwarder_task, forwarder = await start_forwarder(services)
    if forwarder_task is not None:
        logger.info("taskwire.forwarder_started", supervised=settings.forwarder_supervised)

    yield

    logger.info("taskwire.shutdown")

    if forwarder_task is not None:
        forwarder_task.cancel()
        try:
            await forwarder_task
        except asyncio.CancelledError:
            pass
    await close_quietly(forwarder)

    services.registry.clear()
    if provided is None:
        await close_services(services)


def create_app(services: Optional[AppServices] = None) -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="Taskwire",
        description="Background task distribution with realtime progress over WebSockets",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    # Starlette middleware executes in reverse order of registration.
    from taskwire.middleware.request_id import RequestIdMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    from taskwire.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: taskwire.main:app)
app = create_app()
