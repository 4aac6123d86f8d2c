"""Periodic job scheduler for the worker process.

Learn: the worker owns the clock for recurring maintenance. It does not run
the job inline; it publishes a CleanupExpiredToken task to the `tasks`
destination like any other producer would, so the cleanup goes through
the same pool, logging and retry path as user-triggered work.
"""

import asyncio

import structlog

from taskwire.config import MessageType
from taskwire.messaging.base import MessageProducer
from taskwire.tasks import publish_task
from taskwire.tasks.types import CleanupExpiredToken

logger = structlog.get_logger()


class CleanupScheduler:
    def __init__(self, producer: MessageProducer, interval: float = 3600.0):
        self.producer = producer
        self.interval = interval
        self.published = 0
        self._running = False

    async def tick(self) -> None:
        event = await publish_task(self.producer, CleanupExpiredToken(), MessageType.TASKS.value)
        self.published += 1
        logger.info("scheduler.cleanup_published", event_id=event.id)

    async def run_loop(self) -> None:
        """Publish a cleanup task every `interval` seconds until stopped."""
        self._running = True
        logger.info("scheduler.started", interval=self.interval)

        while self._running:
            await asyncio.sleep(self.interval)
            if not self._running:
                break
            try:
                await self.tick()
            except Exception:
                logger.exception("scheduler.publish_failed")

    def stop(self) -> None:
        self._running = False
