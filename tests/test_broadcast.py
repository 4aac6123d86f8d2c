"""Broadcast registry, message routing and the supervised forwarder."""

import asyncio
import json

import pytest

from taskwire.broadcast.forwarder import MessageForwarder, forward_message, run_forwarder_supervised
from taskwire.broadcast.registry import BroadcastMessage, BroadcastRegistry, Outbox
from taskwire.messaging.config import RedisForwarderConfig


def progress(task_id: str, pct: int) -> str:
    return json.dumps({
        "event_type": "avatar_upload_progress",
        "data": {"task_id": task_id, "user_id": 1, "progress": pct, "status": "processing"},
    })


# ─── Registry ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_send_to_registered_key():
    registry = BroadcastRegistry()
    outbox = Outbox()
    registry.register("t-1", outbox)

    assert registry.send_to("t-1", BroadcastMessage(event_type="x", data={"n": 1}))
    message = await asyncio.wait_for(outbox.get(), 1)
    assert message.data == {"n": 1}


@pytest.mark.asyncio
async def test_send_to_missing_key_returns_false():
    registry = BroadcastRegistry()
    assert registry.send_to("nobody", BroadcastMessage(event_type="x")) is False


@pytest.mark.asyncio
async def test_register_replaces_previous_outbox():
    registry = BroadcastRegistry()
    old, new = Outbox(), Outbox()
    registry.register("t-1", old)
    registry.register("t-1", new)

    registry.send_to("t-1", BroadcastMessage(event_type="x"))
    assert new.qsize() == 1
    assert old.qsize() == 0
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_stale_unregister_does_not_evict_replacement():
    registry = BroadcastRegistry()
    old, new = Outbox(), Outbox()
    registry.register("t-1", old)
    registry.register("t-1", new)

    registry.unregister("t-1", old)
    assert "t-1" in registry

    registry.unregister("t-1", new)
    assert "t-1" not in registry


@pytest.mark.asyncio
async def test_unregister_without_outbox_and_missing_key():
    registry = BroadcastRegistry()
    registry.register("t-1", Outbox())
    registry.unregister("t-1")
    registry.unregister("t-1")
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_send_to_all_and_clear():
    registry = BroadcastRegistry()
    outboxes = [Outbox() for _ in range(3)]
    for i, outbox in enumerate(outboxes):
        registry.register(f"t-{i}", outbox)

    assert registry.send_to_all(BroadcastMessage(event_type="x")) == 3
    assert all(o.qsize() == 1 for o in outboxes)

    registry.clear()
    assert len(registry) == 0
    assert registry.send_to_all(BroadcastMessage(event_type="x")) == 0


@pytest.mark.asyncio
async def test_user_keys():
    registry = BroadcastRegistry()
    outbox = Outbox()
    registry.register_user(42, outbox)

    assert "user-42" in registry
    assert registry.send_to_user(42, BroadcastMessage(event_type="x"))
    registry.unregister_user(42)
    assert not registry.send_to_user(42, BroadcastMessage(event_type="x"))


@pytest.mark.asyncio
async def test_send_from_another_thread_reaches_owning_loop():
    registry = BroadcastRegistry()
    outbox = Outbox()
    registry.register("t-1", outbox)

    loop = asyncio.get_running_loop()
    delivered = await loop.run_in_executor(
        None, registry.send_to, "t-1", BroadcastMessage(event_type="x", data=1)
    )
    assert delivered
    message = await asyncio.wait_for(outbox.get(), 1)
    assert message.data == 1


# ─── Routing ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_forward_routes_by_task_id():
    registry = BroadcastRegistry()
    outbox = Outbox()
    registry.register("t-1", outbox)

    assert forward_message(registry, progress("t-1", 40))
    message = await outbox.get()
    assert message.event_type == "avatar_upload_progress"
    assert message.data["progress"] == 40


@pytest.mark.asyncio
async def test_task_id_takes_precedence_over_user_id():
    registry = BroadcastRegistry()
    task_box, user_box = Outbox(), Outbox()
    registry.register("t-1", task_box)
    registry.register_user(1, user_box)

    forward_message(registry, progress("t-1", 10))
    assert task_box.qsize() == 1
    assert user_box.qsize() == 0


@pytest.mark.asyncio
async def test_forward_falls_back_to_user_id():
    registry = BroadcastRegistry()
    outbox = Outbox()
    registry.register_user(9, outbox)

    payload = json.dumps({"event_type": "notice", "data": {"user_id": 9}})
    assert forward_message(registry, payload)
    assert outbox.qsize() == 1


@pytest.mark.asyncio
async def test_unroutable_and_malformed_messages_are_dropped():
    registry = BroadcastRegistry()
    registry.register("t-1", Outbox())

    assert not forward_message(registry, json.dumps({"event_type": "x", "data": {"foo": 1}}))
    assert not forward_message(registry, json.dumps({"event_type": "x", "data": {"user_id": "9"}}))
    assert not forward_message(registry, b"{not json")
    assert not forward_message(registry, progress("someone-else", 10))


# ─── Supervised forwarder ────────────────────────────────


class OneShotForwarder(MessageForwarder):
    broker_type = "Fake"

    def __init__(self, registry, payloads):
        super().__init__(registry)
        self.payloads = payloads
        self.closed = False

    async def _stream(self):
        for payload in self.payloads:
            yield payload

    async def close(self):
        self.closed = True


@pytest.mark.asyncio
async def test_supervisor_restarts_after_failure_and_stream_end():
    registry = BroadcastRegistry()
    outbox = Outbox()
    registry.register("t-1", outbox)

    attempts = []
    created = []

    async def factory(config, reg):
        attempts.append(1)
        if len(attempts) == 1:
            raise ConnectionError("broker unreachable")
        forwarder = OneShotForwarder(reg, [progress("t-1", len(attempts))])
        created.append(forwarder)
        return forwarder

    supervisor = asyncio.create_task(run_forwarder_supervised(
        RedisForwarderConfig(url="redis://test"),
        registry,
        initial_backoff=0.001,
        max_backoff=0.004,
        factory=factory,
    ))
    while len(attempts) < 4:
        await asyncio.sleep(0.005)
    supervisor.cancel()
    with pytest.raises(asyncio.CancelledError):
        await supervisor

    assert outbox.qsize() >= 2
    assert all(f.closed for f in created[:-1])
