"""Backend factories — pick the implementation from the config type."""

from taskwire.messaging.base import MessageConsumer, MessageProducer
from taskwire.messaging.config import (
    ConsumerConfig,
    KafkaConsumerConfig,
    KafkaProducerConfig,
    ProducerConfig,
    RabbitMQConsumerConfig,
    RabbitMQProducerConfig,
    RedisConsumerConfig,
    RedisProducerConfig,
)
from taskwire.messaging.worker_pool import WorkerPool


async def create_producer(config: ProducerConfig) -> MessageProducer:
    """Build and connect a producer. Raises BrokerConnectionError if unreachable."""
    if isinstance(config, KafkaProducerConfig):
        from taskwire.messaging.kafka_backend import KafkaProducer

        return await KafkaProducer.create(config)
    if isinstance(config, RedisProducerConfig):
        from taskwire.messaging.redis_backend import RedisProducer

        return await RedisProducer.create(config)
    if isinstance(config, RabbitMQProducerConfig):
        from taskwire.messaging.rabbitmq_backend import RabbitMQProducer

        return await RabbitMQProducer.create(config)
    raise TypeError(f"Unsupported producer config: {type(config).__name__}")


async def create_consumer(config: ConsumerConfig, pool: WorkerPool) -> MessageConsumer:
    """Build a consumer in the CREATED (or, for Kafka, already started) state."""
    if isinstance(config, KafkaConsumerConfig):
        from taskwire.messaging.kafka_backend import KafkaConsumer

        return await KafkaConsumer.create(config, pool)
    if isinstance(config, RedisConsumerConfig):
        from taskwire.messaging.redis_backend import RedisConsumer

        return RedisConsumer(config, pool)
    if isinstance(config, RabbitMQConsumerConfig):
        from taskwire.messaging.rabbitmq_backend import RabbitMQConsumer

        return RabbitMQConsumer(config, pool)
    raise TypeError(f"Unsupported consumer config: {type(config).__name__}")
