"""Bounded worker pool — decodes raw messages and runs the task handler.

Learn: the pool is the only concurrency control in the consume path. A
consumer calls `submit()` for every raw message; `submit()` blocks until
one of `size` semaphore permits is free, then spawns a task that owns the
permit for its whole lifetime (decode → handle → release). So the number
of messages being processed never exceeds `size`, and the consumer stops
reading from the broker while the pool is saturated.

Failure policy:
- Undecodable payloads are logged and dropped (no retry, no dead-letter).
- Handler exceptions are logged. When retry is enabled and a producer is
  attached, the event is republished to the default destination with
  retry_count + 1 after `backoff_base ** retry_count` seconds, until
  max_retries is reached.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional, Union

import structlog

from taskwire.messaging.base import MessageProducer, TaskHandler
from taskwire.messaging.events import TaskEvent

logger = structlog.get_logger()


@dataclass
class WorkerPoolStats:
    """Runtime counters for monitoring and tests."""

    received: int = 0
    succeeded: int = 0
    failed: int = 0
    decode_errors: int = 0
    retried: int = 0
    in_flight: int = 0
    peak_in_flight: int = 0


class WorkerPool:
    def __init__(
        self,
        handler: TaskHandler,
        event_type: type[TaskEvent],
        size: int,
        producer: Optional[MessageProducer] = None,
        retry_enabled: bool = True,
        backoff_base: float = 2.0,
    ):
        if size < 1:
            raise ValueError("worker pool size must be at least 1")
        self.handler = handler
        self.event_type = event_type
        self.size = size
        self.producer = producer
        self.retry_enabled = retry_enabled
        self.backoff_base = backoff_base
        self.semaphore = asyncio.Semaphore(size)
        self.stats = WorkerPoolStats()
        self._tasks: set[asyncio.Task] = set()
        self._retries: set[asyncio.Task] = set()

    async def submit(self, payload: Union[bytes, str], source: Optional[str] = None) -> None:
        """Wait for a free permit, then process `payload` in the background."""
        self.stats.received += 1
        await self.semaphore.acquire()
        task = asyncio.create_task(self._run(payload, source))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, payload: Union[bytes, str], source: Optional[str]) -> None:
        self.stats.in_flight += 1
        self.stats.peak_in_flight = max(self.stats.peak_in_flight, self.stats.in_flight)
        try:
            try:
                event = self.event_type.from_json(payload)
            except ValueError as e:
                # pydantic.ValidationError and UnicodeDecodeError are both ValueErrors
                self.stats.decode_errors += 1
                logger.error("worker.decode_failed", source=source, error=str(e))
                return

            log = logger.bind(
                event_id=event.id,
                task_type=type(event.task).__name__,
                priority=event.priority.value,
                retry_count=event.retry_count,
                source=source,
            )
            log.info("worker.task_started")
            try:
                await self.handler.handle_task(event)
            except Exception:
                self.stats.failed += 1
                log.exception("worker.task_failed")
                self._schedule_retry(event)
            else:
                self.stats.succeeded += 1
                log.info("worker.task_completed")
        finally:
            self.stats.in_flight -= 1
            self.semaphore.release()

    def _schedule_retry(self, event: TaskEvent) -> None:
        if not self.retry_enabled or self.producer is None:
            return
        if not event.should_retry():
            logger.error(
                "worker.retries_exhausted",
                event_id=event.id,
                max_retries=event.max_retries,
            )
            return

        retry_event = event.next_retry()
        delay = self.backoff_base ** retry_event.retry_count
        self.stats.retried += 1
        logger.info(
            "worker.retry_scheduled",
            event_id=retry_event.id,
            retry_count=retry_event.retry_count,
            delay=delay,
        )
        task = asyncio.create_task(self._republish_later(retry_event, delay))
        self._retries.add(task)
        task.add_done_callback(self._retries.discard)

    async def _republish_later(self, event: TaskEvent, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self.producer.publish_event_json(event.to_json())
        except Exception:
            logger.exception("worker.retry_publish_failed", event_id=event.id)

    async def wait_idle(self) -> None:
        """Wait until no handler or pending retry is outstanding."""
        while self._tasks or self._retries:
            await asyncio.gather(*self._tasks, *self._retries, return_exceptions=True)

    async def cancel(self) -> None:
        """Cancel in-flight handlers and pending retries (hard shutdown)."""
        pending = [*self._tasks, *self._retries]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info("worker.cancelled", count=len(pending))
