"""Broadcast forwarder — relays the `broadcasts` stream into the registry.

Learn: workers publish progress to the reserved `broadcasts` destination on
whatever broker is configured. The web process runs one forwarder that
subscribes to that destination and hands every payload to
`forward_message()`, which routes it to the WebSocket registered for the
message's task id (or legacy user id). Messages for keys nobody is
connected to are dropped; late joiners read the task status cache instead.

Kafka uses its own consumer group ("{group}_forwarder") starting at the
latest offset, so the forwarder neither competes with the workers for task
partitions nor replays old progress on restart.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import AsyncIterator, Awaitable, Callable, Optional, Union

import structlog
from pydantic import ValidationError

from taskwire.broadcast.registry import BroadcastMessage, BroadcastRegistry
from taskwire.messaging.config import (
    ForwarderConfig,
    KafkaForwarderConfig,
    RabbitMQForwarderConfig,
    RedisForwarderConfig,
)

logger = structlog.get_logger()

RABBITMQ_CONSUMER_TAG = "websocket_forwarder"


def forward_message(registry: BroadcastRegistry, payload: Union[bytes, str]) -> bool:
    """Decode one broadcast and deliver it. Returns True if a connection got it."""
    try:
        message = BroadcastMessage.model_validate_json(payload)
    except (ValidationError, ValueError) as e:
        logger.error("forwarder.decode_failed", error=str(e))
        return False

    data = message.data if isinstance(message.data, dict) else {}

    task_id = data.get("task_id")
    if isinstance(task_id, str):
        delivered = registry.send_to(task_id, message)
        logger.debug("forwarder.routed", key=task_id, event_type=message.event_type, delivered=delivered)
        return delivered

    user_id = data.get("user_id")
    if isinstance(user_id, int) and not isinstance(user_id, bool):
        delivered = registry.send_to_user(user_id, message)
        logger.debug("forwarder.routed", user_id=user_id, event_type=message.event_type, delivered=delivered)
        return delivered

    logger.error("forwarder.unroutable", event_type=message.event_type)
    return False


class MessageForwarder(ABC):
    broker_type: str = "unknown"

    def __init__(self, registry: BroadcastRegistry):
        self.registry = registry

    async def start_forwarding(self) -> None:
        """Forward until the upstream stream ends."""
        logger.info("forwarder.started", broker=self.broker_type)
        async for payload in self._stream():
            forward_message(self.registry, payload)
        logger.error("forwarder.stream_ended", broker=self.broker_type)

    @abstractmethod
    def _stream(self) -> AsyncIterator[Union[bytes, str]]:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class RedisForwarder(MessageForwarder):
    broker_type = "Redis"

    def __init__(self, registry: BroadcastRegistry, client, channel: str):
        super().__init__(registry)
        self.channel = channel
        self._client = client
        self._pubsub = None

    @classmethod
    async def create(cls, config: RedisForwarderConfig, registry: BroadcastRegistry) -> "RedisForwarder":
        from taskwire.messaging.redis_backend import connect_redis

        client = await connect_redis(config.url)
        forwarder = cls(registry, client, config.channel)
        await forwarder.subscribe()
        return forwarder

    async def subscribe(self) -> None:
        self._pubsub = self._client.pubsub()
        await self._pubsub.subscribe(self.channel)

    async def _stream(self) -> AsyncIterator[Union[bytes, str]]:
        async for message in self._pubsub.listen():
            if message["type"] == "message":
                yield message["data"]

    async def close(self) -> None:
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class KafkaForwarder(MessageForwarder):
    broker_type = "Kafka"

    def __init__(self, registry: BroadcastRegistry, client):
        super().__init__(registry)
        self._client = client

    @classmethod
    async def create(cls, config: KafkaForwarderConfig, registry: BroadcastRegistry) -> "KafkaForwarder":
        from aiokafka import AIOKafkaConsumer
        from aiokafka.errors import KafkaError

        from taskwire.messaging.errors import BrokerConnectionError
        from taskwire.messaging.kafka_backend import ensure_topics_exist

        await ensure_topics_exist(config.brokers, [config.topic])
        client = AIOKafkaConsumer(
            config.topic,
            bootstrap_servers=config.brokers,
            group_id=f"{config.consumer_group}_forwarder",
            auto_offset_reset="latest",
            enable_auto_commit=True,
        )
        try:
            await client.start()
        except KafkaError as e:
            await client.stop()
            raise BrokerConnectionError(f"Failed to start Kafka forwarder: {e}") from e
        return cls(registry, client)

    async def _stream(self) -> AsyncIterator[Union[bytes, str]]:
        async for record in self._client:
            if record.value is not None:
                yield record.value

    async def close(self) -> None:
        await self._client.stop()


class RabbitMQForwarder(MessageForwarder):
    broker_type = "RabbitMQ"

    def __init__(self, registry: BroadcastRegistry, connection, queue):
        super().__init__(registry)
        self._connection = connection
        self._queue = queue

    @classmethod
    async def create(cls, config: RabbitMQForwarderConfig, registry: BroadcastRegistry) -> "RabbitMQForwarder":
        from taskwire.messaging.rabbitmq_backend import connect_rabbitmq

        connection = await connect_rabbitmq(config.url)
        channel = await connection.channel()
        queue = await channel.declare_queue(config.queue, durable=True)
        return cls(registry, connection, queue)

    async def _stream(self) -> AsyncIterator[Union[bytes, str]]:
        async with self._queue.iterator(consumer_tag=RABBITMQ_CONSUMER_TAG) as messages:
            async for message in messages:
                async with message.process():
                    yield message.body

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None


async def create_forwarder(config: ForwarderConfig, registry: BroadcastRegistry) -> MessageForwarder:
    """Build a subscribed forwarder. Raises BrokerConnectionError if unreachable."""
    if isinstance(config, KafkaForwarderConfig):
        return await KafkaForwarder.create(config, registry)
    if isinstance(config, RedisForwarderConfig):
        return await RedisForwarder.create(config, registry)
    if isinstance(config, RabbitMQForwarderConfig):
        return await RabbitMQForwarder.create(config, registry)
    raise TypeError(f"Unsupported forwarder config: {type(config).__name__}")


ForwarderFactory = Callable[[ForwarderConfig, BroadcastRegistry], Awaitable[MessageForwarder]]


async def close_quietly(forwarder: Optional[MessageForwarder]) -> None:
    if forwarder is None:
        return
    try:
        await forwarder.close()
    except Exception:
        logger.exception("forwarder.close_failed", broker=forwarder.broker_type)


async def run_forwarder_supervised(
    config: ForwarderConfig,
    registry: BroadcastRegistry,
    *,
    initial_backoff: float = 1.0,
    max_backoff: float = 30.0,
    factory: ForwarderFactory = create_forwarder,
) -> None:
    """Keep a forwarder running, recreating it with exponential backoff.

    Runs until cancelled. The backoff resets whenever a forwarder is
    created successfully.
    """
    backoff = initial_backoff
    while True:
        forwarder = None
        try:
            forwarder = await factory(config, registry)
            backoff = initial_backoff
            await forwarder.start_forwarding()
        except Exception:
            logger.exception("forwarder.failed")
        finally:
            await close_quietly(forwarder)

        logger.warning("forwarder.restarting", delay=backoff)
        await asyncio.sleep(backoff)
        backoff = min(backoff * 2, max_backoff)

