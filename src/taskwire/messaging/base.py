"""Abstract producer / consumer / handler contracts.

Learn: three brokers, one interface. The application only ever talks to
MessageProducer and MessageConsumer; the backend modules (kafka_backend,
redis_backend, rabbitmq_backend) fill in the transport-specific hooks.

The consumer owns the lifecycle state machine

    CREATED → CONNECTED → CONSUMING → CLOSED

and the receive loop. Backends only supply `_connect`, `_receive` (an
async iterator of raw payloads) and `_close`. Decoding and dispatch are
delegated to the WorkerPool, which bounds concurrency with a semaphore.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator, Optional, Union

import structlog

from taskwire.messaging.errors import ConsumerStateError, PublishError
from taskwire.messaging.events import TaskEvent

if TYPE_CHECKING:
    from taskwire.messaging.worker_pool import WorkerPool

logger = structlog.get_logger()


def extract_event_id(payload: str) -> Optional[str]:
    """Pull the "id" field out of a JSON payload, for logging only."""
    try:
        data = json.loads(payload)
    except ValueError:
        return None
    if isinstance(data, dict) and isinstance(data.get("id"), str):
        return data["id"]
    return None


class TaskHandler(ABC):
    """Application-supplied dispatcher for decoded task events."""

    @abstractmethod
    async def handle_task(self, event: TaskEvent) -> None:
        """Process one event. Raise to signal failure."""
        ...


class MessageProducer(ABC):
    """Publishes JSON messages to a named destination (topic / channel / queue)."""

    broker_type: str = "unknown"

    def __init__(self, default_destination: str):
        self.default_destination = default_destination

    def resolve_destination(self, destination: Optional[str]) -> str:
        return destination or self.default_destination

    async def publish_event_json(self, payload: str, destination: Optional[str] = None) -> None:
        """Publish a pre-serialized JSON message.

        `destination` overrides the configured default. Transport failures
        are raised as PublishError.
        """
        target = self.resolve_destination(destination)
        event_id = extract_event_id(payload)
        try:
            await self._publish(payload, target, event_id)
        except PublishError:
            raise
        except Exception as e:
            raise PublishError(
                f"Failed to publish to {self.broker_type} destination {target!r}: {e}"
            ) from e

    async def publish_event(self, event: TaskEvent, destination: Optional[str] = None) -> None:
        await self.publish_event_json(event.to_json(), destination)

    @abstractmethod
    async def _publish(self, payload: str, destination: str, event_id: Optional[str]) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release broker resources. Safe to call more than once."""
        ...


class ConsumerState(str, Enum):
    CREATED = "created"
    CONNECTED = "connected"
    CONSUMING = "consuming"
    CLOSED = "closed"


@dataclass(frozen=True)
class ReceivedMessage:
    """A raw message pulled off the broker, not yet decoded."""

    payload: Union[bytes, str]
    destination: str


class MessageConsumer(ABC):
    """Pulls messages from the broker and hands them to a WorkerPool."""

    broker_type: str = "unknown"

    def __init__(self, pool: "WorkerPool"):
        self.pool = pool
        self.state = ConsumerState.CREATED

    async def connect(self) -> None:
        """Establish the broker session. Idempotent."""
        if self.state in (ConsumerState.CONNECTED, ConsumerState.CONSUMING):
            return
        if self.state is ConsumerState.CLOSED:
            raise ConsumerStateError(f"{self.broker_type} consumer is closed")
        await self._connect()
        self.state = ConsumerState.CONNECTED
        logger.info("consumer.connected", broker=self.broker_type)

    async def consume(self) -> None:
        """Receive → acquire permit → spawn handler, until the stream ends.

        Blocking on the permit before reading the next message is the only
        back-pressure applied to the broker.
        """
        if self.state is not ConsumerState.CONNECTED:
            raise ConsumerStateError(
                f"{self.broker_type} consumer must be connected before consume() "
                f"(state={self.state.value})"
            )
        self.state = ConsumerState.CONSUMING
        logger.info("consumer.consuming", broker=self.broker_type)

        async for message in self._receive():
            await self.pool.submit(message.payload, source=message.destination)

        logger.warning("consumer.stream_ended", broker=self.broker_type)

    async def close(self) -> None:
        """Close the broker session. Safe to call more than once."""
        if self.state is ConsumerState.CLOSED:
            return
        self.state = ConsumerState.CLOSED
        await self._close()
        logger.info("consumer.closed", broker=self.broker_type)

    @abstractmethod
    async def _connect(self) -> None:
        ...

    @abstractmethod
    def _receive(self) -> AsyncIterator[ReceivedMessage]:
        ...

    @abstractmethod
    async def _close(self) -> None:
        ...
