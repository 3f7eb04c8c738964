"""Dependency guard for destructive transitions.

This mirrors the server's referential integrity rule so that a blocked
removal is explained before any request is sent. The server still
re-validates every removal.
"""

from collections.abc import Mapping, Sequence

import httpx
import structlog

from fleet_console.api import FleetAPIClient
from fleet_console.errors import DependencyConflict, FleetError
from fleet_console.kinds import KindSpec
from shared.contracts.dto.resource import DependentDTO, ResourceDTO

logger = structlog.get_logger(__name__)


def _pluralize(noun: str, count: int) -> str:
    return noun if count == 1 else f"{noun}s"


def describe_dependents(
    resource: ResourceDTO, dependents: Sequence[DependentDTO], count: int | None = None
) -> str:
    """Human explanation of why ``resource`` cannot be removed.

    Example: "Cannot uninstall shop. 2 sites currently depend on it: a.com, b.com.
    Remove or migrate them first."
    """
    count = count if count is not None else len(dependents)
    kinds = {d.kind for d in dependents}
    noun = kinds.pop().replace("-", " ") if len(kinds) == 1 else "resource"
    verb = "depends" if count == 1 else "depend"

    noun = _pluralize(noun, count)
    message = f"Cannot uninstall {resource.label}. {count} {noun} currently {verb} on it"
    if dependents:
        message += ": " + ", ".join(d.name for d in dependents)
    return message + ". Remove or migrate them first."


class DependencyGuard:
    def __init__(self, api: FleetAPIClient):
        self.api = api

    @staticmethod
    def blocks(resource: ResourceDTO) -> bool:
        return resource.dependent_count > 0

    async def check(
        self, resource: ResourceDTO, spec: KindSpec, params: Mapping[str, str]
    ) -> None:
        """Raise DependencyConflict if anything depends on ``resource``.

        The dependents list is only used for the explanation; when it cannot
        be fetched the removal is still refused on the known count.
        """
        if not self.blocks(resource):
            return

        dependents: list[DependentDTO] = []
        try:
            dependents = await self.api.list_dependents(spec, params, resource.id)
        except (httpx.HTTPError, FleetError) as e:
            logger.warning(
                "dependents_fetch_failed",
                kind=spec.kind.value,
                resource_id=resource.id,
                error=str(e),
                error_type=type(e).__name__,
            )

        count = len(dependents) or resource.dependent_count
        logger.info(
            "removal_blocked_by_dependents",
            kind=spec.kind.value,
            resource_id=resource.id,
            dependent_count=count,
        )
        message = describe_dependents(resource, dependents, count)
        raise DependencyConflict(message, dependents, count)
