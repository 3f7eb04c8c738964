from typing import Any, Literal

from pydantic import Field

from shared.contracts.base import EventMeta

RESOURCE_CHANGED = "ResourceChanged"


class ResourceChanged(EventMeta):
    """Invalidation signal: something in ``scope`` changed, refetch ``props``.

    The event never carries resource state. An empty ``props`` list means
    every prop the receiving view has mounted is stale.
    """

    event: Literal["ResourceChanged"] = RESOURCE_CHANGED
    scope: str
    props: list[str] = Field(default_factory=list)


def host_channel(host_id: str | int) -> str:
    return f"host:{host_id}"


def site_channel(site_id: str | int) -> str:
    return f"site:{site_id}"


def parse_event(data: dict[str, Any]) -> ResourceChanged:
    """Parse a raw channel payload into a typed event."""

    return ResourceChanged.model_validate(data)
