"""RabbitMQ backend on aio-pika.

Learn: every destination is a durable queue on the default exchange, so
the routing key is simply the queue name. The producer declares the queue
before its first publish and sends persistent messages, so tasks survive
a broker restart.

The consumer acks a delivery as soon as it is taken off the local buffer,
before the handler runs. A crash mid-handler loses that task; retries are
the worker pool's job, not the broker's.
"""

import asyncio
from typing import AsyncIterator, Optional

import aio_pika
import structlog
from aio_pika.abc import AbstractChannel, AbstractIncomingMessage, AbstractRobustConnection
from aio_pika.exceptions import AMQPError

from taskwire.messaging.base import MessageConsumer, MessageProducer, ReceivedMessage
from taskwire.messaging.config import RabbitMQConsumerConfig, RabbitMQProducerConfig
from taskwire.messaging.errors import BrokerConnectionError
from taskwire.messaging.worker_pool import WorkerPool

logger = structlog.get_logger()

PREFETCH_COUNT = 10


async def connect_rabbitmq(url: str) -> AbstractRobustConnection:
    try:
        return await aio_pika.connect_robust(url)
    except (AMQPError, OSError) as e:
        raise BrokerConnectionError(f"Failed to connect to RabbitMQ: {e}") from e


class RabbitMQProducer(MessageProducer):
    broker_type = "RabbitMQ"

    def __init__(
        self,
        connection: AbstractRobustConnection,
        channel: AbstractChannel,
        default_queue: str,
    ):
        super().__init__(default_queue)
        self._connection: Optional[AbstractRobustConnection] = connection
        self._channel = channel
        self._declared: set[str] = set()

    @classmethod
    async def create(cls, config: RabbitMQProducerConfig) -> "RabbitMQProducer":
        connection = await connect_rabbitmq(config.url)
        # Publisher confirms are on by default
        channel = await connection.channel()
        logger.info("producer.created", broker=cls.broker_type, default_queue=config.default_queue)
        return cls(connection, channel, config.default_queue)

    async def _ensure_queue(self, queue: str) -> None:
        if queue in self._declared:
            return
        await self._channel.declare_queue(queue, durable=True)
        self._declared.add(queue)

    async def _publish(self, payload: str, destination: str, event_id: Optional[str]) -> None:
        if self._connection is None:
            raise BrokerConnectionError("RabbitMQ producer is closed")
        await self._ensure_queue(destination)
        message = aio_pika.Message(
            body=payload.encode("utf-8"),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        )
        await self._channel.default_exchange.publish(message, routing_key=destination)
        logger.debug("producer.published", broker=self.broker_type, queue=destination, event_id=event_id)

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None


class RabbitMQConsumer(MessageConsumer):
    broker_type = "RabbitMQ"

    def __init__(self, config: RabbitMQConsumerConfig, pool: WorkerPool):
        super().__init__(pool)
        self.url = config.url
        self.queues = config.queues
        self._connection: Optional[AbstractRobustConnection] = None
        self._channel: Optional[AbstractChannel] = None
        self._declared = []
        self._buffer: asyncio.Queue[Optional[AbstractIncomingMessage]] = asyncio.Queue()

    async def _connect(self) -> None:
        self._connection = await connect_rabbitmq(self.url)
        self._channel = await self._connection.channel()
        await self._channel.set_qos(prefetch_count=PREFETCH_COUNT)
        self._declared = [
            await self._channel.declare_queue(name, durable=True) for name in self.queues
        ]

    async def _receive(self) -> AsyncIterator[ReceivedMessage]:
        for queue in self._declared:
            await queue.consume(self._buffer.put, consumer_tag=f"taskwire-{queue.name}")
            logger.info("consumer.subscribed", broker=self.broker_type, queue=queue.name)

        while True:
            message = await self._buffer.get()
            if message is None:
                return
            await message.ack()
            yield ReceivedMessage(payload=message.body, destination=message.routing_key or "")

    async def _close(self) -> None:
        self._buffer.put_nowait(None)
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
