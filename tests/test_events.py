"""Tests for publishing shoot events to Redis."""

import json

import pytest
import redis

from shoot_operator import events
from shoot_operator.config import Settings


class FakeRedis:
    def __init__(self, error=None):
        self.error = error
        self.pings = 0
        self.closed = False
        self.streams = {}
        self.published = []

    async def ping(self):
        self.pings += 1
        if self.error is not None:
            raise self.error
        return True

    async def aclose(self):
        self.closed = True

    async def xadd(self, name, fields, maxlen=None):
        self.streams.setdefault(name, []).append((fields, maxlen))

    async def publish(self, channel, message):
        self.published.append((channel, message))


@pytest.fixture
def connect(monkeypatch):
    """Route Redis.from_url to FakeRedis instances and reset the module state."""
    def install(error=None):
        created = []

        def from_url(url, **kwargs):
            created.append(FakeRedis(error))
            return created[-1]

        monkeypatch.setattr(events.aioredis.Redis, "from_url", from_url)
        return created

    monkeypatch.setattr(events, "settings", Settings(REDIS_URL="redis://localhost:6379/0"))
    monkeypatch.setattr(events, "_redis_client", None)
    monkeypatch.setattr(events, "_retry_at", 0.0)
    return install


class TestPublishEvent:
    @pytest.mark.asyncio
    async def test_disabled_without_url(self, monkeypatch):
        monkeypatch.setattr(events, "settings", Settings(REDIS_URL=""))
        monkeypatch.setattr(events, "_redis_client", None)
        await events.publish_event("foo", "CLEANUP_START", "Cleaning up shoot foo")

    @pytest.mark.asyncio
    async def test_publishes_to_stream_and_channel(self, connect):
        created = connect()
        await events.publish_event("foo", "CLEANUP_COMPLETE", "Shoot foo cleanup complete", "Deleted")
        await events.publish_event("foo", "CLEANUP_START", "Cleaning up shoot foo", "Deleting")

        assert len(created) == 1
        r = created[0]
        entries = r.streams["shoot:events:foo"]
        assert [fields["type"] for fields, _ in entries] == ["CLEANUP_COMPLETE", "CLEANUP_START"]
        assert {maxlen for _, maxlen in entries} == {events.STREAM_MAXLEN}
        channel, message = r.published[0]
        assert channel == events.CHANNEL
        assert json.loads(message)["status"] == "Deleted"

    @pytest.mark.asyncio
    async def test_unavailable_redis_is_not_pinged_on_every_event(self, connect):
        created = connect(redis.ConnectionError("connection refused"))
        for _ in range(5):
            await events.publish_event("foo", "CONDITION_TRANSITION", "EveryNodeReady is False")

        assert len(created) == 1
        assert created[0].pings == 1
        assert created[0].closed
        assert created[0].streams == {}

    @pytest.mark.asyncio
    async def test_reconnects_after_interval(self, connect, monkeypatch):
        connect(redis.ConnectionError("connection refused"))
        await events.publish_event("foo", "CLEANUP_START", "Cleaning up shoot foo")

        healthy = connect()
        await events.publish_event("foo", "CLEANUP_START", "Cleaning up shoot foo")
        assert healthy == []

        monkeypatch.setattr(events, "_retry_at", 0.0)
        await events.publish_event("foo", "CLEANUP_START", "Cleaning up shoot foo")
        assert len(healthy) == 1
        assert "shoot:events:foo" in healthy[0].streams
