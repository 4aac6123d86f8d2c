"""Broker connection configs — one frozen dataclass per backend.

Learn: each union below is closed. The factories dispatch on the concrete
type, so a new backend adds one dataclass per role plus one branch per
factory.
"""

from dataclasses import dataclass
from typing import Union

# Reserved destination for progress relay traffic, on every backend.
BROADCASTS_DESTINATION = "broadcasts"


# ─── Producers ───────────────────────────────────────────


@dataclass(frozen=True)
class KafkaProducerConfig:
    brokers: str
    default_topic: str


@dataclass(frozen=True)
class RedisProducerConfig:
    url: str
    default_channel: str


@dataclass(frozen=True)
class RabbitMQProducerConfig:
    url: str
    default_queue: str


ProducerConfig = Union[KafkaProducerConfig, RedisProducerConfig, RabbitMQProducerConfig]


# ─── Consumers ───────────────────────────────────────────


@dataclass(frozen=True)
class KafkaConsumerConfig:
    brokers: str
    consumer_group: str
    topics: tuple[str, ...]


@dataclass(frozen=True)
class RedisConsumerConfig:
    url: str
    channels: tuple[str, ...]


@dataclass(frozen=True)
class RabbitMQConsumerConfig:
    url: str
    queues: tuple[str, ...]


ConsumerConfig = Union[KafkaConsumerConfig, RedisConsumerConfig, RabbitMQConsumerConfig]


# ─── Broadcast forwarders ────────────────────────────────


@dataclass(frozen=True)
class KafkaForwarderConfig:
    brokers: str
    consumer_group: str
    topic: str = BROADCASTS_DESTINATION


@dataclass(frozen=True)
class RedisForwarderConfig:
    url: str
    channel: str = BROADCASTS_DESTINATION


@dataclass(frozen=True)
class RabbitMQForwarderConfig:
    url: str
    queue: str = BROADCASTS_DESTINATION


ForwarderConfig = Union[KafkaForwarderConfig, RedisForwarderConfig, RabbitMQForwarderConfig]
