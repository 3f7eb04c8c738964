"""Per-kind configuration for the generic lifecycle engine.

Every resource kind reuses the same state machine, action gate and sync
controller. What differs between kinds (allowed states, capabilities,
endpoint templates, poll cadence, invalidation prop) is declared here.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from string import Formatter
from typing import Literal

from shared.contracts.dto.resource import ResourceKind, ResourceStatus


class PollWeight(str, Enum):
    """Polling cadence class. Coarse list rows poll slower than live output."""

    LIST = "list"
    RESOURCE = "resource"
    LIVE = "live"


PROVISIONED_STATES = frozenset(
    {
        ResourceStatus.PENDING,
        ResourceStatus.INSTALLING,
        ResourceStatus.ACTIVE,
        ResourceStatus.UPDATING,
        ResourceStatus.REMOVING,
        ResourceStatus.FAILED,
        ResourceStatus.REMOVED,
    }
)
TOGGLEABLE_STATES = PROVISIONED_STATES | {ResourceStatus.PAUSED}
RUN_STATES = frozenset(
    {
        ResourceStatus.PENDING,
        ResourceStatus.RUNNING,
        ResourceStatus.SUCCESS,
        ResourceStatus.FAILED,
    }
)


@dataclass(frozen=True)
class KindSpec:
    kind: ResourceKind
    # top-level prop named by invalidation events
    prop: str
    collection: str
    states: frozenset[ResourceStatus] = PROVISIONED_STATES
    channel: Literal["host", "site"] = "host"
    supports_update: bool = True
    supports_delete: bool = True
    supports_retry: bool = True
    supports_toggle: bool = False
    supports_secondary: bool = False
    supports_rollback: bool = False
    # one-off operations that leave the lifecycle state alone
    supports_run: bool = False
    supports_restart: bool = False
    supports_default: bool = False
    poll_weight: PollWeight = PollWeight.RESOURCE
    live_output: bool = False
    # props refetched once after a pipeline run reaches a terminal state
    refetch_on_finish: tuple[str, ...] = field(default_factory=tuple)

    @property
    def required_params(self) -> frozenset[str]:
        return frozenset(
            name for _, name, _, _ in Formatter().parse(self.collection) if name is not None
        )

    def collection_path(self, params: Mapping[str, str]) -> str:
        missing = self.required_params - params.keys()
        if missing:
            raise ValueError(
                f"{self.kind.value} collection needs {', '.join(sorted(missing))}"
            )
        return self.collection.format(**params)

    def item_path(self, params: Mapping[str, str], resource_id: str) -> str:
        return f"{self.collection_path(params)}/{resource_id}"


KINDS: dict[ResourceKind, KindSpec] = {
    spec.kind: spec
    for spec in (
        KindSpec(
            kind=ResourceKind.DATABASE,
            prop="databases",
            collection="servers/{host_id}/databases",
        ),
        KindSpec(
            kind=ResourceKind.SCHEMA,
            prop="schemas",
            collection="servers/{host_id}/databases/{database_id}/schemas",
            supports_update=False,
            poll_weight=PollWeight.LIST,
        ),
        KindSpec(
            kind=ResourceKind.DATABASE_USER,
            prop="databaseUsers",
            collection="servers/{host_id}/databases/{database_id}/users",
            supports_secondary=True,
            poll_weight=PollWeight.LIST,
        ),
        KindSpec(
            kind=ResourceKind.FIREWALL_RULE,
            prop="firewallRules",
            collection="servers/{host_id}/firewall/rules",
            supports_update=False,
            poll_weight=PollWeight.LIST,
        ),
        KindSpec(
            kind=ResourceKind.RUNTIME_VERSION,
            prop="runtimes",
            collection="servers/{host_id}/runtimes",
        ),
        KindSpec(
            kind=ResourceKind.SCHEDULED_TASK,
            prop="scheduledTasks",
            collection="servers/{host_id}/scheduler/tasks",
            states=TOGGLEABLE_STATES,
            supports_toggle=True,
            supports_run=True,
            poll_weight=PollWeight.LIST,
        ),
        KindSpec(
            kind=ResourceKind.SUPERVISED_WORKER,
            prop="supervisorTasks",
            collection="servers/{host_id}/supervisor/tasks",
            states=TOGGLEABLE_STATES,
            supports_toggle=True,
            supports_restart=True,
            poll_weight=PollWeight.LIST,
        ),
        KindSpec(
            kind=ResourceKind.SITE,
            prop="sites",
            collection="servers/{host_id}/sites",
            channel="site",
            supports_default=True,
        ),
        KindSpec(
            kind=ResourceKind.DEPLOYMENT,
            prop="deployments",
            collection="servers/{host_id}/sites/{site_id}/deployments",
            states=RUN_STATES,
            channel="site",
            supports_update=False,
            supports_delete=False,
            supports_retry=False,
            supports_rollback=True,
            poll_weight=PollWeight.LIVE,
            live_output=True,
            refetch_on_finish=("deployments",),
        ),
    )
}

_BY_PROP = {spec.prop: spec for spec in KINDS.values()}


def get_kind_spec(kind: ResourceKind | str) -> KindSpec:
    """Look up a kind by enum, wire value (``firewall-rule``) or prop (``firewallRules``)."""
    if isinstance(kind, ResourceKind):
        return KINDS[kind]
    if kind in _BY_PROP:
        return _BY_PROP[kind]
    try:
        return KINDS[ResourceKind(kind)]
    except ValueError:
        raise KeyError(f"Unknown resource kind: {kind}") from None
