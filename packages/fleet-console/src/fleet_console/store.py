"""Per-view resource collection with "apply iff newer" merging.

Push refetches, poll ticks and dispatcher responses for the same resource
complete in any order. Each request takes a ticket from the collection
before it is issued; a completion is merged only if nothing newer has
landed for that resource already.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
import itertools
from typing import Any
import uuid

from pydantic import ValidationError
import structlog

from fleet_console.errors import UnexpectedResponse
from fleet_console.kinds import KindSpec
from fleet_console.lifecycle import PrimaryStateMachine, has_pending_work
from shared.contracts.dto.resource import ResourceDTO, ResourceStatus, StatusProbe

logger = structlog.get_logger(__name__)

PLACEHOLDER_PREFIX = "local-"


def _as_utc(value: datetime | None) -> datetime | None:
    # servers mix offset and naive timestamps; naive ones are UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


@dataclass
class _Entry:
    resource: ResourceDTO
    ticket: int
    optimistic: bool = False


class ResourceCollection:
    """Resources of one kind, owned by a single view."""

    def __init__(self, spec: KindSpec):
        self.spec = spec
        self.machine = PrimaryStateMachine(spec)
        self._entries: dict[str, _Entry] = {}
        self._tickets = itertools.count(1)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ResourceDTO]:
        return iter([entry.resource for entry in self._entries.values()])

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self._entries

    def get(self, resource_id: str) -> ResourceDTO | None:
        entry = self._entries.get(resource_id)
        return entry.resource if entry else None

    def is_optimistic(self, resource_id: str) -> bool:
        entry = self._entries.get(resource_id)
        return entry is not None and entry.optimistic

    def next_ticket(self) -> int:
        """Take a ticket. Must be called before the request is issued."""
        return next(self._tickets)

    def transitional(self) -> list[ResourceDTO]:
        """Confirmed resources still waiting on remote work."""
        return [
            entry.resource
            for entry in self._entries.values()
            if not entry.optimistic and has_pending_work(entry.resource)
        ]

    def _is_newer(self, entry: _Entry, candidate: ResourceDTO, ticket: int) -> bool:
        if entry.optimistic:
            return True
        current_at = _as_utc(entry.resource.updated_at)
        candidate_at = _as_utc(candidate.updated_at)
        if current_at is not None and candidate_at is not None and current_at != candidate_at:
            return candidate_at > current_at
        return ticket >= entry.ticket

    def _check_kind(self, resource: ResourceDTO) -> None:
        if resource.kind != self.spec.kind:
            raise UnexpectedResponse(
                f"{resource.kind.value} returned for {self.spec.kind.value} collection"
            )
        if not self.machine.allows(resource.status):
            raise UnexpectedResponse(
                f"{self.spec.kind.value} cannot be {resource.status.value}"
            )

    def apply(self, resource: ResourceDTO, ticket: int) -> bool:
        """Merge a completion. Returns False if it was stale and discarded."""
        self._check_kind(resource)
        entry = self._entries.get(resource.id)
        if entry is not None and not self._is_newer(entry, resource, ticket):
            logger.debug(
                "stale_completion_discarded",
                kind=self.spec.kind.value,
                resource_id=resource.id,
                ticket=ticket,
                landed_ticket=entry.ticket,
            )
            return False

        previous = entry.resource.status if entry and not entry.optimistic else None
        self.machine.observe(previous, resource.status)

        if resource.status == ResourceStatus.REMOVED:
            self._entries.pop(resource.id, None)
        else:
            self._entries[resource.id] = _Entry(resource, ticket)
        return True

    def apply_probe(self, resource_id: str, probe: StatusProbe, ticket: int) -> bool:
        entry = self._entries.get(resource_id)
        if entry is None:
            return False
        try:
            resource = entry.resource.apply_probe(probe)
        except ValidationError as e:
            raise UnexpectedResponse(f"Inconsistent status probe for {resource_id}") from e
        return self.apply(resource, ticket)

    def replace_all(self, resources: Iterable[ResourceDTO], ticket: int) -> None:
        """Merge a full list refetch.

        Confirmed entries missing from the list are dropped unless something
        newer than the list request has landed for them since.
        """
        resources = list(resources)
        # validate everything first so a bad row leaves the collection untouched
        for resource in resources:
            self._check_kind(resource)

        seen = set()
        for resource in resources:
            seen.add(resource.id)
            self.apply(resource, ticket)

        for resource_id, entry in list(self._entries.items()):
            if resource_id in seen or entry.optimistic:
                continue
            if entry.ticket <= ticket:
                del self._entries[resource_id]

    def add_placeholder(self, name: str | None, config: dict[str, Any]) -> ResourceDTO:
        """Optimistic ``pending`` row shown while a create request is in flight."""
        resource = ResourceDTO(
            id=f"{PLACEHOLDER_PREFIX}{uuid.uuid4().hex[:12]}",
            kind=self.spec.kind,
            name=name,
            status=self.machine.initial,
            config=config,
        )
        self._entries[resource.id] = _Entry(resource, ticket=0, optimistic=True)
        return resource

    def resolve_placeholder(
        self, placeholder_id: str, resource: ResourceDTO, ticket: int
    ) -> ResourceDTO:
        """Swap a placeholder for the server's resource and return what landed."""
        self._entries.pop(placeholder_id, None)
        self.apply(resource, ticket)
        return self.get(resource.id) or resource

    def discard(self, resource_id: str) -> ResourceDTO | None:
        entry = self._entries.pop(resource_id, None)
        return entry.resource if entry else None
