"""Tests for the Redis invalidation channel client."""

import asyncio
import json

from fakeredis import FakeAsyncRedis
import pytest

from shared.contracts.events import ResourceChanged
from shared.redis.client import RedisChannelClient
from shared.redis.tests.fake import FakeChannelClient


@pytest.fixture
def fake_redis():
    return FakeAsyncRedis(decode_responses=True)


async def _next(subscription, timeout: float = 2.0):
    return await asyncio.wait_for(anext(aiter(subscription)), timeout)


class TestRedisChannelClient:
    def test_requires_url_or_client(self, monkeypatch):
        monkeypatch.delenv("REDIS_URL", raising=False)
        with pytest.raises(RuntimeError):
            RedisChannelClient()

    def test_url_from_env(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://redis:6379")
        client = RedisChannelClient()
        assert client.redis_url == "redis://redis:6379"

    def test_redis_requires_connect(self):
        client = RedisChannelClient(redis_url="redis://redis:6379")
        with pytest.raises(RuntimeError):
            _ = client.redis

    @pytest.mark.asyncio
    async def test_publish_and_receive(self, fake_redis):
        client = RedisChannelClient(client=fake_redis)

        async with client.subscribe("host:1") as subscription:
            await client.publish("host:1", ResourceChanged(scope="host:1", props=["databases"]))
            event = await _next(subscription)

        assert event.scope == "host:1"
        assert event.props == ["databases"]

    @pytest.mark.asyncio
    async def test_invalid_messages_are_skipped(self, fake_redis):
        client = RedisChannelClient(client=fake_redis)

        async with client.subscribe("site:3") as subscription:
            await fake_redis.publish("site:3", "not json")
            await fake_redis.publish("site:3", json.dumps({"event": "Unknown"}))
            await client.publish("site:3", ResourceChanged(scope="site:3", props=["deployments"]))
            event = await _next(subscription)

        assert event.props == ["deployments"]

    @pytest.mark.asyncio
    async def test_unsubscribes_on_exit(self, fake_redis):
        client = RedisChannelClient(client=fake_redis)

        async with client.subscribe("host:1"):
            assert await client.publish("host:1", ResourceChanged(scope="host:1")) == 1

        assert await client.publish("host:1", ResourceChanged(scope="host:1")) == 0

    @pytest.mark.asyncio
    async def test_close_keeps_injected_client(self, fake_redis):
        client = RedisChannelClient(client=fake_redis)
        await client.close()
        assert client.redis is fake_redis


class TestFakeChannelClient:
    @pytest.mark.asyncio
    async def test_delivers_to_subscribers_of_channel(self):
        channel = FakeChannelClient()

        async with channel.subscribe("host:1") as subscription:
            assert channel.active_subscriptions == 1
            receivers = await channel.publish("host:1", ResourceChanged(scope="host:1"))
            event = await _next(subscription)

        assert receivers == 1
        assert event.scope == "host:1"
        assert channel.active_subscriptions == 0
        assert await channel.publish("host:1", ResourceChanged(scope="host:1")) == 0
