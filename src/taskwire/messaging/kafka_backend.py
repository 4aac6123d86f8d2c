"""Kafka backend on aiokafka.

Learn: Kafka topics must exist before a consumer group can be assigned
partitions, so both roles call `ensure_topics_exist()` during setup. A
missing topic is created with one partition and replication factor one,
which is what a single-broker dev cluster can hold.

Messages are keyed with a constant key, so everything published to a
topic lands on the same partition and keeps its order.
"""

from typing import AsyncIterator, Iterable, Optional

import structlog
from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from aiokafka.admin import AIOKafkaAdminClient, NewTopic
from aiokafka.errors import KafkaError, TopicAlreadyExistsError

from taskwire.messaging.base import MessageConsumer, MessageProducer, ReceivedMessage
from taskwire.messaging.config import (
    BROADCASTS_DESTINATION,
    KafkaConsumerConfig,
    KafkaProducerConfig,
)
from taskwire.messaging.errors import BrokerConnectionError
from taskwire.messaging.worker_pool import WorkerPool

logger = structlog.get_logger()

MESSAGE_KEY = b"default"
REQUEST_TIMEOUT_MS = 5000
AUTO_COMMIT_INTERVAL_MS = 5000
SESSION_TIMEOUT_MS = 6000


async def ensure_topics_exist(brokers: str, topics: Iterable[str]) -> None:
    """Create any of `topics` the cluster does not have yet."""
    admin = AIOKafkaAdminClient(bootstrap_servers=brokers, request_timeout_ms=REQUEST_TIMEOUT_MS)
    try:
        await admin.start()
    except KafkaError as e:
        raise BrokerConnectionError(f"Failed to connect to Kafka at {brokers}: {e}") from e

    try:
        existing = set(await admin.list_topics())
        missing = [topic for topic in dict.fromkeys(topics) if topic not in existing]
        if not missing:
            return
        try:
            await admin.create_topics(
                [NewTopic(name=topic, num_partitions=1, replication_factor=1) for topic in missing]
            )
            logger.info("kafka.topics_created", topics=missing)
        except TopicAlreadyExistsError:
            logger.info("kafka.topics_already_exist", topics=missing)
        except KafkaError as e:
            logger.warning("kafka.topic_create_failed", topics=missing, error=str(e))
    finally:
        await admin.close()


class KafkaProducer(MessageProducer):
    broker_type = "Kafka"

    def __init__(self, producer: AIOKafkaProducer, default_topic: str):
        super().__init__(default_topic)
        self._producer: Optional[AIOKafkaProducer] = producer

    @classmethod
    async def create(cls, config: KafkaProducerConfig) -> "KafkaProducer":
        await ensure_topics_exist(config.brokers, [config.default_topic, BROADCASTS_DESTINATION])
        producer = AIOKafkaProducer(
            bootstrap_servers=config.brokers,
            request_timeout_ms=REQUEST_TIMEOUT_MS,
        )
        try:
            await producer.start()
        except KafkaError as e:
            await producer.stop()
            raise BrokerConnectionError(f"Failed to start Kafka producer: {e}") from e
        logger.info("producer.created", broker=cls.broker_type, default_topic=config.default_topic)
        return cls(producer, config.default_topic)

    async def _publish(self, payload: str, destination: str, event_id: Optional[str]) -> None:
        if self._producer is None:
            raise BrokerConnectionError("Kafka producer is closed")
        metadata = await self._producer.send_and_wait(
            destination,
            value=payload.encode("utf-8"),
            key=MESSAGE_KEY,
        )
        logger.debug(
            "producer.published",
            broker=self.broker_type,
            topic=destination,
            partition=metadata.partition,
            offset=metadata.offset,
            event_id=event_id,
        )

    async def close(self) -> None:
        if self._producer is not None:
            await self._producer.stop()
            self._producer = None


class KafkaConsumer(MessageConsumer):
    """Group consumer with periodic auto-commit.

    The underlying client is started in `create()`, so `connect()` only
    advances the lifecycle state.
    """

    broker_type = "Kafka"

    def __init__(self, config: KafkaConsumerConfig, pool: WorkerPool, client: AIOKafkaConsumer):
        super().__init__(pool)
        self.topics = config.topics
        self.consumer_group = config.consumer_group
        self._client = client

    @classmethod
    async def create(cls, config: KafkaConsumerConfig, pool: WorkerPool) -> "KafkaConsumer":
        await ensure_topics_exist(config.brokers, config.topics)
        client = AIOKafkaConsumer(
            *config.topics,
            bootstrap_servers=config.brokers,
            group_id=config.consumer_group,
            enable_auto_commit=True,
            auto_commit_interval_ms=AUTO_COMMIT_INTERVAL_MS,
            session_timeout_ms=SESSION_TIMEOUT_MS,
        )
        try:
            await client.start()
        except KafkaError as e:
            await client.stop()
            raise BrokerConnectionError(f"Failed to start Kafka consumer: {e}") from e
        logger.info(
            "consumer.subscribed",
            broker=cls.broker_type,
            group=config.consumer_group,
            topics=list(config.topics),
        )
        return cls(config, pool, client)

    async def _connect(self) -> None:
        pass

    async def _receive(self) -> AsyncIterator[ReceivedMessage]:
        async for record in self._client:
            if record.value is None:
                logger.warning("consumer.empty_message", broker=self.broker_type, topic=record.topic)
                continue
            yield ReceivedMessage(payload=record.value, destination=record.topic)

    async def _close(self) -> None:
        await self._client.stop()
