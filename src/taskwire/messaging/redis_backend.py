"""Redis pub/sub backend.

Learn: Redis pub/sub is fire-and-forget. A message published to a channel
nobody is subscribed to is simply gone, so the producer reports the
subscriber count and warns on zero instead of failing.
"""

from typing import AsyncIterator, Optional

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from taskwire.messaging.base import MessageConsumer, MessageProducer, ReceivedMessage
from taskwire.messaging.config import RedisConsumerConfig, RedisProducerConfig
from taskwire.messaging.errors import BrokerConnectionError
from taskwire.messaging.worker_pool import WorkerPool

logger = structlog.get_logger()


async def connect_redis(url: str) -> aioredis.Redis:
    """Open a client and verify it with PING."""
    client = aioredis.from_url(url, encoding="utf-8", decode_responses=True)
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        await client.aclose()
        raise BrokerConnectionError(f"Failed to connect to Redis at {url}: {e}") from e
    return client


class RedisProducer(MessageProducer):
    broker_type = "Redis"

    def __init__(self, client: aioredis.Redis, default_channel: str):
        super().__init__(default_channel)
        self._client: Optional[aioredis.Redis] = client

    @classmethod
    async def create(cls, config: RedisProducerConfig) -> "RedisProducer":
        client = await connect_redis(config.url)
        logger.info("producer.created", broker=cls.broker_type, default_channel=config.default_channel)
        return cls(client, config.default_channel)

    async def _publish(self, payload: str, destination: str, event_id: Optional[str]) -> None:
        if self._client is None:
            raise BrokerConnectionError("Redis producer is closed")
        receivers = await self._client.publish(destination, payload)
        if receivers == 0:
            logger.warning(
                "producer.no_subscribers",
                broker=self.broker_type,
                channel=destination,
                event_id=event_id,
            )
        else:
            logger.debug(
                "producer.published",
                broker=self.broker_type,
                channel=destination,
                event_id=event_id,
                subscribers=receivers,
            )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class RedisConsumer(MessageConsumer):
    broker_type = "Redis"

    def __init__(
        self,
        config: RedisConsumerConfig,
        pool: WorkerPool,
        client: Optional[aioredis.Redis] = None,
    ):
        super().__init__(pool)
        self.url = config.url
        self.channels = config.channels
        self._client = client
        self._pubsub = None

    async def _connect(self) -> None:
        if self._client is None:
            self._client = await connect_redis(self.url)
        self._pubsub = self._client.pubsub()
        await self._pubsub.subscribe(*self.channels)
        logger.info("consumer.subscribed", broker=self.broker_type, channels=list(self.channels))

    async def _receive(self) -> AsyncIterator[ReceivedMessage]:
        async for message in self._pubsub.listen():
            # Skip subscribe/unsubscribe confirmations
            if message["type"] != "message":
                continue
            yield ReceivedMessage(payload=message["data"], destination=message["channel"])

    async def _close(self) -> None:
        if self._pubsub is not None:
            await self._pubsub.unsubscribe()
            await self._pubsub.aclose()
            self._pubsub = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None
