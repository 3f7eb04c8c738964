"""Builders and helpers shared by the unit tests."""

import asyncio
from collections.abc import Callable
from typing import Any

import httpx

from fleet_console.kinds import PollWeight
from shared.contracts.dto.resource import ResourceDTO

API_URL = "http://fleet.test"

# polling never fires within a test
SLOW_INTERVALS = {PollWeight.LIST: 60.0, PollWeight.RESOURCE: 60.0, PollWeight.LIVE: 60.0}
FAST_INTERVALS = {PollWeight.LIST: 0.01, PollWeight.RESOURCE: 0.01, PollWeight.LIVE: 0.01}


def make_resource(
    kind: str = "database",
    status: str = "active",
    id: str = "1",
    **kwargs: Any,
) -> ResourceDTO:
    """Build a resource; failed resources get an error detail by default."""
    if status == "failed":
        kwargs.setdefault("error_detail", "Command exited with code 1")
    if kwargs.get("secondary_status") == "failed":
        kwargs.setdefault("secondary_error_detail", "Could not apply privileges")
    flags = {}
    if "is_primary" in kwargs:
        flags["is_primary"] = kwargs.pop("is_primary")
    if "dependent_count" in kwargs:
        flags["dependent_count"] = kwargs.pop("dependent_count")
    return ResourceDTO(
        id=id, kind=kind, status=status, structural_flags=flags, **kwargs
    )


def wire(*resources: ResourceDTO) -> list[dict]:
    return [r.to_wire() for r in resources]


def sequence(*payloads: Any, status_code: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    """respx side effect answering with each payload in turn, then repeating the last."""
    calls = iter(payloads)
    last: list[Any] = []

    def respond(request: httpx.Request) -> httpx.Response:
        payload = next(calls, None)
        if payload is None:
            payload = last[0]
        else:
            last[:] = [payload]
        if isinstance(payload, httpx.Response):
            return payload
        return httpx.Response(status_code, json=payload)

    return respond


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)

