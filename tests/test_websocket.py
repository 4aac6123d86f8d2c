"""WebSocket progress streaming, end to end through the registry.

Learn: Starlette's TestClient runs the app on its own event loop in a
worker thread, so these tests are synchronous. Broadcasts are injected
with forward_message() from the test thread, exactly as the forwarder
would call it, which also exercises the registry's cross-thread send.
"""

import json
import time

import pytest
from fastapi.testclient import TestClient

from conftest import FakeRedis
from taskwire.broadcast.forwarder import forward_message
from taskwire.broadcast.registry import BroadcastRegistry
from taskwire.cache.task_cache import TaskStatusCache
from taskwire.main import AppServices, create_app


@pytest.fixture()
def ws_redis():
    return FakeRedis()


@pytest.fixture()
def ws_services(ws_redis):
    return AppServices(
        registry=BroadcastRegistry(),
        session_factory=None,
        cache=TaskStatusCache(ws_redis),
    )


@pytest.fixture()
def ws_client(ws_services):
    with TestClient(create_app(ws_services)) as tc:
        yield tc


def wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        time.sleep(0.01)


def hang_up(ws, registry, key: str) -> None:
    """Close from the client side and wait for the server to unregister."""
    ws.close()
    wait_for(lambda: key not in registry)


def progress(task_id: str, pct: int, event_type: str = "avatar_upload_progress") -> str:
    return json.dumps({
        "event_type": event_type,
        "data": {"task_id": task_id, "user_id": 1, "progress": pct, "status": "processing"},
    })


def test_live_progress_reaches_subscribed_client(ws_client, ws_services):
    registry = ws_services.registry
    with ws_client.websocket_connect("/ws/task/t-1") as ws:
        wait_for(lambda: "t-1" in registry)

        assert forward_message(registry, progress("t-1", 10))
        assert forward_message(registry, progress("t-1", 25))

        assert ws.receive_json()["data"]["progress"] == 10
        assert ws.receive_json()["data"]["progress"] == 25
        hang_up(ws, registry, "t-1")


def test_late_joiner_gets_cached_snapshot_first(ws_client, ws_services, ws_redis):
    ws_redis.store["task:status:t-2"] = json.dumps(
        {"task_id": "t-2", "user_id": 1, "progress": 40, "status": "processing"}
    )
    with ws_client.websocket_connect("/ws/task/t-2") as ws:
        first = ws.receive_json()
        assert first["event_type"] == "avatar_upload_progress"
        assert first["data"]["progress"] == 40

        forward_message(ws_services.registry, progress("t-2", 60))
        assert ws.receive_json()["data"]["progress"] == 60
        hang_up(ws, ws_services.registry, "t-2")


def test_inbound_text_is_ignored(ws_client, ws_services):
    with ws_client.websocket_connect("/ws/task/t-3") as ws:
        ws.send_text("ping")
        wait_for(lambda: "t-3" in ws_services.registry)
        forward_message(ws_services.registry, progress("t-3", 80))
        assert ws.receive_json()["data"]["progress"] == 80
        hang_up(ws, ws_services.registry, "t-3")


def test_disconnect_unregisters(ws_client, ws_services):
    registry = ws_services.registry
    with ws_client.websocket_connect("/ws/task/t-4") as ws:
        wait_for(lambda: "t-4" in registry)
        hang_up(ws, registry, "t-4")
    assert forward_message(registry, progress("t-4", 10)) is False


def test_cache_outage_does_not_block_connection(ws_client, ws_services, ws_redis):
    ws_redis.fail = True
    with ws_client.websocket_connect("/ws/task/t-5") as ws:
        wait_for(lambda: "t-5" in ws_services.registry)
        forward_message(ws_services.registry, progress("t-5", 100, "avatar_upload_complete"))
        assert ws.receive_json()["event_type"] == "avatar_upload_complete"
        hang_up(ws, ws_services.registry, "t-5")


def test_legacy_user_route(ws_client, ws_services):
    registry = ws_services.registry
    with ws_client.websocket_connect("/ws/user/7") as ws:
        wait_for(lambda: "user-7" in registry)
        payload = json.dumps({"event_type": "notice", "data": {"user_id": 7, "text": "hi"}})
        assert forward_message(registry, payload)
        assert ws.receive_json() == {"event_type": "notice", "data": {"user_id": 7, "text": "hi"}}
        hang_up(ws, registry, "user-7")
