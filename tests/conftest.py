"""Test fixtures — in-memory brokers, a fake Redis, and a throwaway SQLite DB.

Learn: nothing here talks to a real broker. The fakes implement exactly the
client surface each backend calls (publish, pubsub, set/get, ...), so the
production adapters run unmodified on top of them.

Database tests get a fresh SQLite file per test (aiosqlite), created from
the ORM metadata and dropped with tmp_path.
"""

import json
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from taskwire.broadcast.registry import BroadcastRegistry
from taskwire.cache.task_cache import TaskStatusCache
from taskwire.db.engine import create_engine, session_factory_for
from taskwire.db.models import Base, RefreshToken, User
from taskwire.main import AppServices, create_app
from taskwire.messaging.base import MessageConsumer, MessageProducer, ReceivedMessage, TaskHandler


# ─── Fakes ───────────────────────────────────────────────


class FakePubSub:
    def __init__(self, messages):
        self.messages = messages
        self.channels = ()
        self.closed = False

    async def subscribe(self, *channels):
        self.channels = channels

    async def unsubscribe(self, *channels):
        self.channels = ()

    async def listen(self):
        for channel in self.channels:
            yield {"type": "subscribe", "channel": channel, "data": 1}
        for channel, data in self.messages:
            if channel in self.channels:
                yield {"type": "message", "channel": channel, "data": data}

    async def aclose(self):
        self.closed = True


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the cache and the pub/sub backend."""

    def __init__(self, subscribers: int = 1, loopback: bool = False):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.published: list[tuple[str, str]] = []
        self.pubsub_messages: list[tuple[str, str]] = []
        self.subscribers = subscribers
        # Echo every publish into the pub/sub stream, like a real server would
        self.loopback = loopback
        self.fail = False
        self.closed = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("Connection refused")

    async def set(self, key, value, ex=None):
        self._check()
        self.store[key] = value
        self.ttls[key] = ex

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def ping(self):
        self._check()
        return True

    async def publish(self, channel, message):
        self._check()
        self.published.append((channel, message))
        if self.loopback:
            self.pubsub_messages.append((channel, message))
        return self.subscribers

    def pubsub(self):
        return FakePubSub(self.pubsub_messages)

    async def aclose(self):
        self.closed = True


class FakeProducer(MessageProducer):
    broker_type = "Fake"

    def __init__(self, default_destination: str = "tasks"):
        super().__init__(default_destination)
        self.published: list[tuple[str, str]] = []
        self.fail = False
        self.closed = False

    async def _publish(self, payload, destination, event_id):
        if self.fail:
            raise ConnectionError("broker down")
        self.published.append((destination, payload))

    async def close(self):
        self.closed = True

    def messages(self, destination=None) -> list[dict]:
        return [
            json.loads(payload)
            for dest, payload in self.published
            if destination is None or dest == destination
        ]


class ListConsumer(MessageConsumer):
    """Consumer whose stream is a fixed list of payloads."""

    broker_type = "List"

    def __init__(self, pool, payloads, destination: str = "tasks"):
        super().__init__(pool)
        self.payloads = list(payloads)
        self.destination = destination
        self.close_calls = 0

    async def _connect(self):
        pass

    async def _receive(self):
        for payload in self.payloads:
            yield ReceivedMessage(payload=payload, destination=self.destination)

    async def _close(self):
        self.close_calls += 1


class RecordingHandler(TaskHandler):
    def __init__(self, side_effect=None):
        self.events = []
        self.side_effect = side_effect

    async def handle_task(self, event):
        self.events.append(event)
        if self.side_effect is not None:
            await self.side_effect(event)


class FakeMailer:
    def __init__(self):
        self.sent = []

    async def send_multipart_mail(self, to, subject, text_body=None, html_body=None):
        self.sent.append({"to": to, "subject": subject, "text_body": text_body, "html_body": html_body})


# ─── Fixtures ────────────────────────────────────────────


@pytest.fixture()
def fake_redis():
    return FakeRedis()


@pytest.fixture()
def cache(fake_redis):
    return TaskStatusCache(fake_redis)


@pytest.fixture()
def producer():
    return FakeProducer()


@pytest_asyncio.fixture()
async def session_factory(tmp_path):
    """Fresh SQLite database per test."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'taskwire.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield session_factory_for(engine)
    finally:
        await engine.dispose()


@pytest_asyncio.fixture()
async def user(session_factory):
    async with session_factory() as session:
        u = User(email="ada@example.com", first_name="Ada", last_name="Lovelace")
        session.add(u)
        await session.commit()
        return u


def utc(**delta) -> datetime:
    return datetime.now(timezone.utc) + timedelta(**delta)


async def add_tokens(session_factory, user_id: int, expires: list[datetime]) -> None:
    async with session_factory() as session:
        for i, expires_at in enumerate(expires):
            session.add(RefreshToken(token=f"tok-{user_id}-{i}", user_id=user_id, expires_at=expires_at))
        await session.commit()


@pytest_asyncio.fixture()
async def services(session_factory, cache, producer):
    return AppServices(
        registry=BroadcastRegistry(),
        session_factory=session_factory,
        cache=cache,
        producer=producer,
    )


@pytest_asyncio.fixture()
async def client(services):
    """HTTP client against an app wired to the in-memory services."""
    app = create_app(services)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
