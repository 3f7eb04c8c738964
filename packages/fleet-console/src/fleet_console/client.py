from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager

from fleet_console.api import FleetAPIClient
from fleet_console.config import Config
from fleet_console.sync import SyncController, ViewScope
from shared.contracts.dto.resource import ResourceKind
from shared.redis.client import RedisChannelClient


# Global/Singleton-like access or just factory
def get_config() -> Config:
    return Config()


def get_api_client(config: Config | None = None) -> FleetAPIClient:
    config = config or get_config()
    return FleetAPIClient(config.api_url, timeout=config.api_timeout)


def get_channel_client(config: Config | None = None) -> RedisChannelClient | None:
    """Push channel client, or None when no Redis is configured (polling only)."""
    config = config or get_config()
    if not config.redis_url:
        return None
    return RedisChannelClient(config.redis_url)


@asynccontextmanager
async def open_view(
    scope: ViewScope, kinds: Iterable[ResourceKind | str], push: bool = False
) -> AsyncIterator[SyncController]:
    """Mount a view for the duration of a command.

    One-shot commands skip the push channel; ``push=True`` subscribes when
    Redis is configured.
    """
    config = get_config()
    api = get_api_client(config)
    channel = get_channel_client(config) if push else None
    try:
        async with SyncController(api, channel, scope, kinds, config=config) as view:
            yield view
    finally:
        await api.close()
        if channel is not None:
            await channel.close()
