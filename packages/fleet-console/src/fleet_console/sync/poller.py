"""Polling fallback for resources in a transitional state."""

import asyncio
from collections.abc import Callable, Mapping

import httpx
import structlog

from fleet_console.api import FleetAPIClient
from fleet_console.errors import APIError, FleetError
from fleet_console.kinds import KindSpec, PollWeight
from fleet_console.lifecycle import has_pending_work
from fleet_console.store import ResourceCollection

logger = structlog.get_logger(__name__)

DEFAULT_POLL_INTERVALS: dict[PollWeight, float] = {
    PollWeight.LIST: 5.0,
    PollWeight.RESOURCE: 2.0,
    PollWeight.LIVE: 1.0,
}


class StatusPoller:
    """Polls the status-only endpoint of one resource until it settles.

    The poller sleeps first: the refetch that started it has just delivered
    fresh state. It stops as soon as the collection no longer holds the
    resource in a transitional state, whichever mechanism put it there.
    """

    def __init__(
        self,
        api: FleetAPIClient,
        spec: KindSpec,
        params: Mapping[str, str],
        collection: ResourceCollection,
        resource_id: str,
        interval: float,
        on_change: Callable[[set[str]], None] | None = None,
    ):
        self.api = api
        self.spec = spec
        self.params = params
        self.collection = collection
        self.resource_id = resource_id
        self.interval = interval
        self.on_change = on_change
        self.ticks = 0

    def _settled(self) -> bool:
        resource = self.collection.get(self.resource_id)
        return resource is None or not has_pending_work(resource)

    async def run(self) -> None:
        log = logger.bind(kind=self.spec.kind.value, resource_id=self.resource_id)
        log.debug("poll_started", interval=self.interval)
        try:
            while True:
                await asyncio.sleep(self.interval)
                if self._settled():
                    break

                ticket = self.collection.next_ticket()
                self.ticks += 1
                try:
                    probe = await self.api.get_status(self.spec, self.params, self.resource_id)
                    if probe.lacks_error_detail:
                        # the failure message only comes with the full resource
                        resource = await self.api.get_resource(
                            self.spec, self.params, self.resource_id
                        )
                        changed = self.collection.apply(resource, ticket)
                    else:
                        changed = self.collection.apply_probe(self.resource_id, probe, ticket)
                except APIError as e:
                    if e.status_code == httpx.codes.NOT_FOUND:
                        self.collection.discard(self.resource_id)
                        self._changed()
                        break
                    log.warning("poll_tick_failed", error=e.message, status_code=e.status_code)
                    continue
                except (httpx.HTTPError, FleetError) as e:
                    log.warning("poll_tick_failed", error=str(e), error_type=type(e).__name__)
                    continue

                if changed:
                    self._changed()
                if self._settled():
                    break
        finally:
            log.debug("poll_stopped", ticks=self.ticks)

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change({self.spec.prop})
