import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from shared.contracts.events import ResourceChanged


class FakeSubscription:
    def __init__(self, channels: tuple[str, ...]):
        self.channels = channels
        self.queue: asyncio.Queue[ResourceChanged] = asyncio.Queue()

    def __aiter__(self) -> AsyncIterator[ResourceChanged]:
        return self._events()

    async def _events(self) -> AsyncIterator[ResourceChanged]:
        while True:
            yield await self.queue.get()


class FakeChannelClient:
    """In-memory channel client for testing."""

    def __init__(self, redis_url: str | None = None):
        self.connected = False
        self.published: list[tuple[str, ResourceChanged]] = []
        self._subscribers: dict[str, list[FakeSubscription]] = defaultdict(list)

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    @property
    def active_subscriptions(self) -> int:
        return sum(len(subs) for subs in self._subscribers.values())

    async def publish(self, channel: str, event: ResourceChanged) -> int:
        self.published.append((channel, event))
        receivers = self._subscribers.get(channel, [])
        for subscription in receivers:
            subscription.queue.put_nowait(event)
        return len(receivers)

    @asynccontextmanager
    async def subscribe(self, *channels: str) -> AsyncIterator[FakeSubscription]:
        subscription = FakeSubscription(channels)
        for channel in channels:
            self._subscribers[channel].append(subscription)
        try:
            yield subscription
        finally:
            for channel in channels:
                self._subscribers[channel].remove(subscription)
