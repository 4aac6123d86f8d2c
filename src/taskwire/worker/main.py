"""Worker entry point — run as a separate process.

Learn: The worker is its own process, separate from the API server. If it
dies, the API keeps accepting requests and tasks wait on the broker.

Wiring, leaves first:
    settings → session factory → SMTP client (optional) → producer
    → ConcreteTaskHandler → WorkerPool → consumer → cleanup scheduler

Shutdown is a hard stop: on SIGINT/SIGTERM the consume loop is cancelled,
in-flight handlers are cancelled, then consumer, producer and cache close.

Usage:
    python -m taskwire.worker.main

Or via the CLI:
    taskwire worker
"""

import asyncio
import logging
import signal
from typing import Optional

from taskwire.cache.task_cache import TaskStatusCache
from taskwire.config import settings
from taskwire.db.engine import create_session_factory
from taskwire.messaging.base import MessageConsumer
from taskwire.messaging.errors import BrokerNotConfiguredError
from taskwire.messaging.factory import create_consumer, create_producer
from taskwire.messaging.worker_pool import WorkerPool
from taskwire.tasks import TaskEvent
from taskwire.tasks.handler import ConcreteTaskHandler
from taskwire.worker.scheduler import CleanupScheduler

logger = logging.getLogger("taskwire.worker")


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


async def serve(
    consumer: MessageConsumer,
    pool: WorkerPool,
    scheduler: Optional[CleanupScheduler] = None,
    stop: Optional[asyncio.Event] = None,
) -> None:
    """Consume until the stream ends or `stop` is set, then tear down.

    The consumer is connected here if it is not already. A crashed consume
    loop is re-raised after teardown so the process exits non-zero.
    """
    stop = stop or asyncio.Event()
    await consumer.connect()

    consume_task = asyncio.create_task(consumer.consume())
    stop_task = asyncio.create_task(stop.wait())
    scheduler_task = asyncio.create_task(scheduler.run_loop()) if scheduler else None

    failure: Optional[BaseException] = None
    try:
        done, _ = await asyncio.wait(
            [consume_task, stop_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        if consume_task in done and consume_task.exception() is not None:
            failure = consume_task.exception()
            logger.error("Consume loop failed: %s", failure)
        elif stop_task in done:
            logger.info("Shutdown signal received")
    finally:
        if scheduler is not None:
            scheduler.stop()
        pending = [t for t in (consume_task, stop_task, scheduler_task) if t is not None and not t.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        await pool.cancel()
        await consumer.close()
        logger.info("Worker stopped. Stats: %s", pool.stats)

    if failure is not None:
        raise failure


async def run() -> None:
    """Run the worker until interrupted."""
    producer_config = settings.to_producer_config()
    if producer_config is None:
        raise BrokerNotConfiguredError("MESSAGE_BROKER must be set to run the worker")
    consumer_config = settings.to_consumer_config()

    session_factory = create_session_factory(settings.database_url, echo=settings.debug)

    mailer = None
    try:
        mailer = settings.get_smtp_client()
    except ValueError as e:
        logger.warning("SMTP disabled, SendEmail tasks will fail: %s", e)

    cache = TaskStatusCache.from_url(settings.redis_url)
    producer = await create_producer(producer_config)

    handler = ConcreteTaskHandler(session_factory, producer, mailer, cache)
    pool = WorkerPool(
        handler,
        TaskEvent,
        settings.worker_pool_size,
        producer=producer,
        retry_enabled=settings.task_retry_enabled,
        backoff_base=settings.retry_backoff_base,
    )

    try:
        consumer = await create_consumer(consumer_config, pool)
        scheduler = CleanupScheduler(producer, settings.cleanup_interval_seconds)

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        logger.info(
            "Worker starting (broker=%s, pool_size=%d)",
            producer.broker_type,
            settings.worker_pool_size,
        )
        await serve(consumer, pool, scheduler, stop)
    finally:
        await producer.close()
        await cache.close()
        await session_factory.kw["bind"].dispose()


def main():
    """CLI entry point."""
    configure_logging()
    asyncio.run(run())


if __name__ == "__main__":
    main()
