"""Application tasks carried by the messaging layer.

`TaskEvent` here is the messaging envelope bound to this application's
task union, so `TaskEvent.from_json()` decodes straight into the right
payload class.
"""

from typing import Optional

from taskwire.messaging.base import MessageProducer
from taskwire.messaging.events import TaskEvent as _GenericTaskEvent
from taskwire.messaging.events import TaskPriority
from taskwire.tasks.types import (
    CleanupExpiredToken,
    ProcessAvatarUpload,
    ProcessUserRegistration,
    SendEmail,
    TaskType,
)

TaskEvent = _GenericTaskEvent[TaskType]


async def publish_task(
    producer: MessageProducer,
    task: TaskType,
    destination: Optional[str] = None,
) -> TaskEvent:
    """Wrap `task` in a fresh event and publish it. Returns the event."""
    return await publish_task_with_priority(producer, task, TaskPriority.NORMAL, destination)


async def publish_task_with_priority(
    producer: MessageProducer,
    task: TaskType,
    priority: TaskPriority,
    destination: Optional[str] = None,
) -> TaskEvent:
    event = TaskEvent.new(task, priority=priority)
    await producer.publish_event(event, destination)
    return event


__all__ = [
    "CleanupExpiredToken",
    "ProcessAvatarUpload",
    "ProcessUserRegistration",
    "SendEmail",
    "TaskEvent",
    "TaskPriority",
    "TaskType",
    "publish_task",
    "publish_task_with_priority",
]
