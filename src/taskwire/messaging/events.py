"""Task event envelope — the unit of work that travels through the broker.

Learn: TaskEvent is generic over the application payload. The messaging
layer only cares about the envelope (id, retry counters, priority); the
application parametrizes it with its own tagged union of task types, e.g.
TaskEvent[TaskType], and pydantic takes care of the discriminated decode.

Wire format:
    {"id": "<uuid>", "task": {"type": "<Tag>", ...}, "created_at": "<RFC3339>",
     "retry_count": 0, "max_retries": 3, "priority": "Normal"}
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Generic, TypeVar, Union

from pydantic import BaseModel, Field

T = TypeVar("T")


class TaskPriority(str, Enum):
    LOW = "Low"
    NORMAL = "Normal"
    HIGH = "High"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_event_id() -> str:
    return str(uuid.uuid4())


class TaskEvent(BaseModel, Generic[T]):
    """Generic event wrapper with metadata around an application task."""

    id: str = Field(default_factory=new_event_id, frozen=True)
    task: T
    created_at: datetime = Field(default_factory=utcnow)
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=0)
    priority: TaskPriority = TaskPriority.NORMAL

    @classmethod
    def new(cls, task: T, priority: TaskPriority = TaskPriority.NORMAL) -> "TaskEvent[T]":
        return cls(task=task, priority=priority)

    def should_retry(self) -> bool:
        return self.retry_count < self.max_retries

    def next_retry(self) -> "TaskEvent[T]":
        """Copy of this event with the retry counter bumped. The id is kept."""
        return self.model_copy(update={"retry_count": self.retry_count + 1})

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "TaskEvent[T]":
        return cls.model_validate_json(data)
