"""Task event envelope and the application task union."""

import json

import pytest
from pydantic import ValidationError

from taskwire.messaging.events import TaskPriority
from taskwire.tasks import TaskEvent
from taskwire.tasks.types import (
    CleanupExpiredToken,
    ProcessAvatarUpload,
    ProcessUserRegistration,
    SendEmail,
)


def test_new_event_defaults():
    event = TaskEvent.new(CleanupExpiredToken())
    assert len(event.id) == 36
    assert event.retry_count == 0
    assert event.max_retries == 3
    assert event.priority is TaskPriority.NORMAL
    assert event.created_at.tzinfo is not None


def test_ids_are_unique():
    assert TaskEvent.new(CleanupExpiredToken()).id != TaskEvent.new(CleanupExpiredToken()).id


def test_json_round_trip_preserves_every_field():
    event = TaskEvent.new(
        SendEmail(to="ada@example.com", subject="Hi", html_body="<p>hi</p>"),
        priority=TaskPriority.HIGH,
    )
    decoded = TaskEvent.from_json(event.to_json())
    assert decoded == event
    assert isinstance(decoded.task, SendEmail)


def test_wire_format():
    event = TaskEvent.new(ProcessUserRegistration(user_id=7))
    data = json.loads(event.to_json())
    assert set(data) == {"id", "task", "created_at", "retry_count", "max_retries", "priority"}
    assert data["task"] == {"type": "ProcessUserRegistration", "user_id": 7}
    assert data["priority"] == "Normal"


def test_decodes_unit_variant_and_tagged_payloads():
    raw = json.dumps({
        "id": "3f0c4b3e-9d5b-4c44-8a3a-0f7d1a8f1c11",
        "task": {"type": "ProcessAvatarUpload", "task_id": "t-1", "user_id": 3, "file_name": "me.png"},
        "created_at": "2025-01-01T00:00:00Z",
        "retry_count": 1,
        "max_retries": 3,
        "priority": "Low",
    })
    event = TaskEvent.from_json(raw)
    assert event.task == ProcessAvatarUpload(task_id="t-1", user_id=3, file_name="me.png")
    assert event.priority is TaskPriority.LOW

    cleanup = TaskEvent.from_json(TaskEvent.new(CleanupExpiredToken()).to_json())
    assert isinstance(cleanup.task, CleanupExpiredToken)


def test_unknown_task_type_is_rejected():
    raw = json.dumps({
        "id": "x",
        "task": {"type": "Nope"},
        "created_at": "2025-01-01T00:00:00Z",
    })
    with pytest.raises(ValidationError):
        TaskEvent.from_json(raw)


def test_id_is_frozen():
    event = TaskEvent.new(CleanupExpiredToken())
    with pytest.raises(ValidationError):
        event.id = "other"


def test_retry_bookkeeping():
    event = TaskEvent.new(CleanupExpiredToken())
    retried = event
    for _ in range(3):
        assert retried.should_retry()
        retried = retried.next_retry()
    assert retried.retry_count == 3
    assert retried.id == event.id
    assert not retried.should_retry()
    assert event.retry_count == 0


def test_negative_counters_rejected():
    with pytest.raises(ValidationError):
        TaskEvent(task=CleanupExpiredToken(), retry_count=-1)
