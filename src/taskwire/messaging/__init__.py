"""Broker-agnostic task messaging: producers, consumers and the worker pool."""

from taskwire.messaging.base import (
    ConsumerState,
    MessageConsumer,
    MessageProducer,
    ReceivedMessage,
    TaskHandler,
)
from taskwire.messaging.config import BROADCASTS_DESTINATION
from taskwire.messaging.errors import (
    BrokerConnectionError,
    BrokerNotConfiguredError,
    ConsumerStateError,
    MessagingError,
    PublishError,
)
from taskwire.messaging.events import TaskEvent, TaskPriority
from taskwire.messaging.factory import create_consumer, create_producer
from taskwire.messaging.worker_pool import WorkerPool, WorkerPoolStats

__all__ = [
    "BROADCASTS_DESTINATION",
    "BrokerConnectionError",
    "BrokerNotConfiguredError",
    "ConsumerState",
    "ConsumerStateError",
    "MessageConsumer",
    "MessageProducer",
    "MessagingError",
    "PublishError",
    "ReceivedMessage",
    "TaskEvent",
    "TaskHandler",
    "TaskPriority",
    "WorkerPool",
    "WorkerPoolStats",
    "create_consumer",
    "create_producer",
]
