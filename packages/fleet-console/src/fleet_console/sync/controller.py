"""Synchronization controller: push invalidation plus polling fallback.

One controller owns the resource collections of one view. It subscribes to
the view's invalidation channels, refetches exactly the props an event
names, starts a poller (or a live output follower) for every resource that
is waiting on remote work, and cancels all of it when the view closes.
"""

import asyncio
from collections.abc import Callable, Coroutine, Iterable
from contextlib import AsyncExitStack
from typing import Any, Protocol

import httpx
import structlog

from fleet_console.api import FleetAPIClient
from fleet_console.config import Config
from fleet_console.errors import FleetError
from fleet_console.gate import ActionSet, evaluate_actions
from fleet_console.kinds import KindSpec, PollWeight, get_kind_spec
from fleet_console.store import ResourceCollection
from fleet_console.sync.live_output import LiveOutputFollower
from fleet_console.sync.poller import DEFAULT_POLL_INTERVALS, StatusPoller
from fleet_console.sync.scope import ViewScope
from shared.contracts.dto.resource import ResourceKind, StatusProbe
from shared.logging import bind_view_scope

logger = structlog.get_logger(__name__)

Listener = Callable[[set[str]], None]


class ChannelClient(Protocol):
    def subscribe(self, *channels: str) -> Any: ...


class ViewClosed(RuntimeError):
    pass


class SyncController:
    """Keeps one view's collections eventually consistent with the server.

    Use as an async context manager; leaving the context cancels every
    refetch, poller and follower and unsubscribes from the channel.
    """

    def __init__(
        self,
        api: FleetAPIClient,
        channel: ChannelClient | None,
        scope: ViewScope,
        kinds: Iterable[ResourceKind | str],
        config: Config | None = None,
        intervals: dict[PollWeight, float] | None = None,
    ):
        self.api = api
        self.channel = channel
        self.scope = scope
        self.specs: dict[str, KindSpec] = {}
        for kind in kinds:
            spec = get_kind_spec(kind)
            # fails fast on a scope missing a parent id
            spec.collection_path(scope.params)
            self.specs[spec.prop] = spec
        self.collections = {prop: ResourceCollection(spec) for prop, spec in self.specs.items()}

        self.intervals = dict(DEFAULT_POLL_INTERVALS)
        if config is not None:
            self.intervals.update(config.poll_intervals())
        if intervals is not None:
            self.intervals.update(intervals)

        self._tasks: set[asyncio.Task] = set()
        self._refetches: dict[str, asyncio.Task] = {}
        self._trackers: dict[tuple[str, str], asyncio.Task] = {}
        self._listeners: list[Listener] = []
        self._stack = AsyncExitStack()
        self._started = False
        self._closed = False

    async def __aenter__(self) -> "SyncController":
        try:
            await self.start()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # --- Lifecycle ---

    async def start(self) -> None:
        """Subscribe, then load every mounted prop.

        Subscribing first means no invalidation can fall between the initial
        load and the subscription.
        """
        if self._started:
            return
        self._started = True
        bind_view_scope(self.scope.name)

        if self.channel is not None:
            channels = self.scope.channels(self.specs.values())
            try:
                subscription = await self._stack.enter_async_context(
                    self.channel.subscribe(*channels)
                )
            except Exception as e:
                logger.warning(
                    "channel_subscribe_failed",
                    channels=channels,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            else:
                self.spawn(self._listen(subscription), name="listen")

        await self.refresh()
        logger.info("view_started", scope=self.scope.name, props=sorted(self.specs))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._stack.aclose()
        self._listeners.clear()
        logger.info("view_closed", scope=self.scope.name, cancelled_tasks=len(tasks))

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def active_tasks(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    def spawn(self, coro: Coroutine, name: str | None = None) -> asyncio.Task:
        """Run ``coro`` as a task owned by this view."""
        if self._closed:
            coro.close()
            raise ViewClosed(f"View {self.scope.name} is closed")
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "sync_task_failed",
                task=task.get_name(),
                error=str(exc),
                error_type=type(exc).__name__,
            )

    # --- Access ---

    def spec(self, kind: ResourceKind | str) -> KindSpec:
        spec = get_kind_spec(kind)
        if spec.prop not in self.specs:
            raise KeyError(f"{spec.prop} is not mounted in {self.scope.name}")
        return spec

    def collection(self, kind: ResourceKind | str) -> ResourceCollection:
        return self.collections[self.spec(kind).prop]

    def actions(self, kind: ResourceKind | str, resource_id: str) -> ActionSet | None:
        spec = self.spec(kind)
        resource = self.collections[spec.prop].get(resource_id)
        if resource is None:
            return None
        return evaluate_actions(resource, spec)

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a change callback; returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def notify(self, props: set[str]) -> None:
        for listener in list(self._listeners):
            listener(props)

    # --- Push invalidation ---

    async def _listen(self, subscription) -> None:
        try:
            async for event in subscription:
                props = [p for p in (event.props or self.specs) if p in self.specs]
                if not props:
                    logger.debug("invalidation_ignored", scope=event.scope, props=event.props)
                    continue
                logger.debug("invalidation_received", scope=event.scope, props=props)
                self.invalidate(props)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # polling keeps transitional rows moving without the channel
            logger.error(
                "channel_listener_failed",
                error=str(e),
                error_type=type(e).__name__,
            )

    def invalidate(self, props: Iterable[str]) -> list[asyncio.Task]:
        """Schedule a refetch of each named prop, superseding any in flight."""
        return [self._schedule_refetch(prop) for prop in props if prop in self.specs]

    def _schedule_refetch(self, prop: str) -> asyncio.Task:
        current = self._refetches.get(prop)
        if current is not None and not current.done():
            current.cancel()
            logger.debug("refetch_superseded", prop=prop)
        task = self.spawn(self._refetch(prop), name=f"refetch:{prop}")
        self._refetches[prop] = task
        return task

    async def refresh(self, props: Iterable[str] | None = None) -> None:
        """Refetch ``props`` (default: all mounted) and wait for the newest result."""
        props = [p for p in (props or self.specs) if p in self.specs]
        for prop in props:
            self._schedule_refetch(prop)
        await self._wait_refetches(props)

    async def wait_idle(self) -> None:
        """Wait until no refetch is in flight."""
        await self._wait_refetches(list(self.specs))

    async def _wait_refetches(self, props: list[str]) -> None:
        # a superseding refetch may be scheduled while we wait
        while True:
            pending = [
                task
                for prop, task in self._refetches.items()
                if prop in props and not task.done()
            ]
            if not pending:
                return
            await asyncio.wait(pending)

    async def _refetch(self, prop: str) -> None:
        spec = self.specs[prop]
        collection = self.collections[prop]
        ticket = collection.next_ticket()
        try:
            resources = await self.api.list_resources(spec, self.scope.params)
            collection.replace_all(resources, ticket)
        except (httpx.HTTPError, FleetError) as e:
            # keep last-known-good; the next invalidation or tick retries
            logger.warning(
                "resource_refetch_failed",
                prop=prop,
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        logger.debug("resource_refetched", prop=prop, count=len(collection))
        self.ensure_tracking(spec.kind)
        self.notify({prop})

    # --- Polling fallback ---

    def ensure_tracking(self, kind: ResourceKind | str) -> None:
        """Start a poller or follower for every resource waiting on remote work."""
        if self._closed:
            return
        spec = self.spec(kind)
        for resource in self.collections[spec.prop].transitional():
            key = (spec.prop, resource.id)
            task = self._trackers.get(key)
            if task is not None and not task.done():
                continue
            if spec.live_output:
                coro = self._follower(spec, resource.id).follow()
            else:
                coro = StatusPoller(
                    self.api,
                    spec,
                    self.scope.params,
                    self.collections[spec.prop],
                    resource.id,
                    self.intervals[spec.poll_weight],
                    on_change=self.notify,
                ).run()
            self._trackers[key] = self.spawn(coro, name=f"track:{spec.prop}:{resource.id}")

    def is_tracking(self, kind: ResourceKind | str, resource_id: str) -> bool:
        task = self._trackers.get((self.spec(kind).prop, resource_id))
        return task is not None and not task.done()

    def _follower(
        self,
        spec: KindSpec,
        resource_id: str,
        on_output: Callable[[str], None] | None = None,
    ) -> LiveOutputFollower:
        collection = self.collections[spec.prop]

        def on_probe(probe: StatusProbe) -> None:
            try:
                changed = collection.apply_probe(resource_id, probe, collection.next_ticket())
            except FleetError as e:
                logger.warning("live_output_probe_rejected", resource_id=resource_id, error=str(e))
                return
            if changed:
                self.notify({spec.prop})

        async def on_finished(probe: StatusProbe | None) -> None:
            if probe is None and collection.discard(resource_id) is not None:
                self.notify({spec.prop})
            # one reconciling refetch of the history once the run settles
            if spec.refetch_on_finish:
                self.invalidate(spec.refetch_on_finish)

        return LiveOutputFollower(
            fetch=lambda: self.api.get_status(spec, self.scope.params, resource_id),
            interval=self.intervals[PollWeight.LIVE],
            on_probe=on_probe,
            on_output=on_output,
            on_finished=on_finished,
            name=f"{spec.kind.value}:{resource_id}",
        )

    def follow_run(
        self,
        kind: ResourceKind | str,
        resource_id: str,
        on_output: Callable[[str], None] | None = None,
    ) -> asyncio.Task:
        """Follow a pipeline run's live output until it finishes.

        Replaces any silent follower already tracking the run. The returned
        task resolves to the final status probe, or None if the run is gone.
        """
        spec = self.spec(kind)
        if not spec.live_output:
            raise ValueError(f"{spec.kind.value} has no live output")
        key = (spec.prop, resource_id)
        current = self._trackers.get(key)
        if current is not None and not current.done():
            current.cancel()
        task = self.spawn(
            self._follower(spec, resource_id, on_output).follow(),
            name=f"follow:{spec.prop}:{resource_id}",
        )
        self._trackers[key] = task
        return task
