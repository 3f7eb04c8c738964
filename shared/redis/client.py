"""Redis pub/sub client for resource invalidation channels.

Channels are scoped per managed host (``host:{id}``) and, for high-churn
resources, per instance (``site:{id}``). Every message is a
``ResourceChanged`` signal; state itself is always refetched over HTTP.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import json
import os

from pydantic import ValidationError
import redis.asyncio as redis
import structlog

from shared.contracts.events import ResourceChanged, parse_event

logger = structlog.get_logger(__name__)


class ChannelSubscription:
    """Async iterator over invalidation events of a set of channels."""

    def __init__(self, pubsub: redis.client.PubSub, channels: tuple[str, ...]):
        self._pubsub = pubsub
        self.channels = channels

    def __aiter__(self) -> AsyncIterator[ResourceChanged]:
        return self._events()

    async def _events(self) -> AsyncIterator[ResourceChanged]:
        async for message in self._pubsub.listen():
            if message["type"] != "message":
                continue

            try:
                data = json.loads(message["data"])
            except (json.JSONDecodeError, TypeError):
                logger.warning("channel_event_invalid_json", channel=message.get("channel"))
                continue

            try:
                event = parse_event(data)
            except ValidationError as exc:
                logger.warning(
                    "channel_event_validation_failed",
                    channel=message.get("channel"),
                    errors=exc.errors(),
                )
                continue

            yield event


class RedisChannelClient:
    """Client for the push-invalidation channel."""

    def __init__(self, redis_url: str | None = None, client: redis.Redis | None = None):
        """Initialize the channel client.

        Args:
            redis_url: Redis connection URL. Falls back to REDIS_URL env var.
            client: Pre-built Redis client (tests pass a fakeredis instance).
        """
        self._redis: redis.Redis | None = client
        self._owns_client = client is None
        self.redis_url = redis_url or os.getenv("REDIS_URL")
        if client is None and not self.redis_url:
            raise RuntimeError(
                "Redis URL not provided. Pass redis_url argument or set REDIS_URL env var."
            )

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, decode_responses=True)
            logger.info("redis_connected", redis_url=self.redis_url)

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis is not None and self._owns_client:
            await self._redis.aclose()
            self._redis = None
            logger.info("redis_connection_closed")

    @property
    def redis(self) -> redis.Redis:
        """Get Redis client, ensuring connection."""
        if self._redis is None:
            raise RuntimeError("Redis not connected. Call connect() first.")
        return self._redis

    async def publish(self, channel: str, event: ResourceChanged) -> int:
        """Publish an invalidation event. Returns the number of receivers."""
        payload = json.dumps(event.model_dump(mode="json", by_alias=True))
        receivers = await self.redis.publish(channel, payload)
        logger.debug(
            "channel_event_published",
            channel=channel,
            props=event.props,
            receivers=receivers,
        )
        return receivers

    @asynccontextmanager
    async def subscribe(self, *channels: str) -> AsyncIterator[ChannelSubscription]:
        """Subscribe to ``channels`` for the lifetime of the context."""
        await self.connect()
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(*channels)
        logger.info("channel_subscribed", channels=list(channels))
        try:
            yield ChannelSubscription(pubsub, channels)
        finally:
            try:
                await pubsub.unsubscribe(*channels)
                await pubsub.aclose()
            except Exception as e:
                logger.error(
                    "redis_pubsub_close_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
            logger.info("channel_unsubscribed", channels=list(channels))
