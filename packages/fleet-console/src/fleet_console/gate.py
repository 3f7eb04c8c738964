"""Action gate: which operator actions a resource offers right now.

``evaluate_actions`` is pure. It reads the primary status, the secondary
update track and the structural flags, and returns every action the kind
exposes together with its target transition and whether it is enabled.
"""

from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum

from fleet_console.errors import ActionNotAvailable
from fleet_console.kinds import KindSpec, get_kind_spec
from fleet_console.lifecycle import PrimaryStateMachine, SecondaryStateMachine, is_transitional
from shared.contracts.dto.resource import ResourceDTO, ResourceStatus, SecondaryStatus


class Action(str, Enum):
    UPDATE = "update"
    DELETE = "delete"
    TOGGLE_PAUSE = "toggle-pause"
    RESUME = "resume"
    RETRY = "retry"
    CANCEL_UPDATE = "cancel-update"
    ROLLBACK = "rollback"
    RUN_NOW = "run"
    RESTART = "restart"
    SET_DEFAULT = "set-default"
    UNSET_DEFAULT = "unset-default"


class Track(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


DESTRUCTIVE_ACTIONS = frozenset({Action.DELETE, Action.ROLLBACK})

SECONDARY_MACHINE = SecondaryStateMachine()


@dataclass(frozen=True)
class AvailableAction:
    action: Action
    track: Track
    # None on the secondary track means "cleared"
    target: ResourceStatus | SecondaryStatus | None
    enabled: bool
    reason: str | None = None

    @property
    def destructive(self) -> bool:
        return self.action in DESTRUCTIVE_ACTIONS


@dataclass(frozen=True)
class ActionSet:
    resource_id: str
    status: ResourceStatus
    actions: tuple[AvailableAction, ...]

    def __iter__(self) -> Iterator[AvailableAction]:
        return iter(self.actions)

    def __len__(self) -> int:
        return len(self.actions)

    def get(self, action: Action, track: Track | None = None) -> AvailableAction | None:
        for candidate in self.actions:
            if candidate.action == action and (track is None or candidate.track == track):
                return candidate
        return None

    def offers(self, action: Action, track: Track | None = None) -> bool:
        found = self.get(action, track)
        return found is not None and found.enabled

    def require(self, action: Action, track: Track | None = None) -> AvailableAction:
        """Return the enabled ``action`` or raise ``ActionNotAvailable``."""
        found = self.get(action, track)
        if found is None:
            raise ActionNotAvailable(action.value, f"not offered while {self.status.value}")
        if not found.enabled:
            raise ActionNotAvailable(action.value, found.reason or "disabled")
        return found

    @property
    def enabled(self) -> tuple[AvailableAction, ...]:
        return tuple(a for a in self.actions if a.enabled)

    @property
    def names(self) -> list[str]:
        return [a.action.value for a in self.enabled]


def _dependents_reason(resource: ResourceDTO) -> str:
    count = resource.dependent_count
    noun = "resource depends" if count == 1 else "resources depend"
    return f"{count} {noun} on it"


def _offer(
    machine: PrimaryStateMachine,
    status: ResourceStatus,
    action: Action,
    target: ResourceStatus,
    reason: str | None = None,
) -> list[AvailableAction]:
    """``action`` if an operator may move ``status`` to ``target``, else nothing."""
    if not machine.can_transition(status, target, user=True):
        return []
    return [AvailableAction(action, Track.PRIMARY, target, reason is None, reason)]


def _read_only(spec: KindSpec, resource: ResourceDTO, reason: str) -> list[AvailableAction]:
    """Everything the kind could do, all disabled."""
    actions = []
    if spec.supports_update:
        actions.append(AvailableAction(Action.UPDATE, Track.PRIMARY, None, False, reason))
    if spec.supports_delete and not resource.is_primary:
        actions.append(AvailableAction(Action.DELETE, Track.PRIMARY, None, False, reason))
    if spec.supports_toggle and not resource.is_primary:
        actions.append(AvailableAction(Action.TOGGLE_PAUSE, Track.PRIMARY, None, False, reason))
    return actions


def _update(
    spec: KindSpec, machine: PrimaryStateMachine, resource: ResourceDTO
) -> list[AvailableAction]:
    if not spec.supports_update:
        return []
    if not spec.supports_secondary:
        return _offer(machine, resource.status, Action.UPDATE, ResourceStatus.UPDATING)

    secondary = resource.secondary_status
    if secondary == SecondaryStatus.FAILED:
        reason = "previous update failed; retry or cancel it first"
    elif not SECONDARY_MACHINE.can_transition(secondary, SecondaryStatus.PENDING):
        reason = "an update is already in progress"
    else:
        reason = None
    return [
        AvailableAction(
            Action.UPDATE, Track.SECONDARY, SecondaryStatus.PENDING, reason is None, reason
        )
    ]


def _active(
    spec: KindSpec, machine: PrimaryStateMachine, resource: ResourceDTO
) -> list[AvailableAction]:
    actions = _update(spec, machine, resource)
    status = resource.status

    if spec.supports_default:
        # the primary flag itself is what these flip
        flip = Action.UNSET_DEFAULT if resource.is_primary else Action.SET_DEFAULT
        actions.append(AvailableAction(flip, Track.PRIMARY, None, True))

    if resource.is_primary:
        return actions

    if spec.supports_run:
        actions.append(AvailableAction(Action.RUN_NOW, Track.PRIMARY, None, True))
    if spec.supports_restart:
        actions.append(AvailableAction(Action.RESTART, Track.PRIMARY, None, True))

    if spec.supports_delete:
        if resource.dependent_count > 0:
            reason = _dependents_reason(resource)
        elif spec.supports_secondary and resource.secondary_status in (
            SecondaryStatus.PENDING,
            SecondaryStatus.UPDATING,
        ):
            reason = "an update is in progress"
        else:
            reason = None
        actions += _offer(machine, status, Action.DELETE, ResourceStatus.REMOVING, reason)

    if spec.supports_toggle:
        actions += _offer(machine, status, Action.TOGGLE_PAUSE, ResourceStatus.PAUSED)
    return actions


def _failed(
    spec: KindSpec, machine: PrimaryStateMachine, resource: ResourceDTO
) -> list[AvailableAction]:
    actions = []
    if spec.supports_retry:
        actions += _offer(machine, resource.status, Action.RETRY, ResourceStatus.INSTALLING)
    if spec.supports_delete and not resource.is_primary:
        # nothing was provisioned, so there is nothing to unwind
        reason = _dependents_reason(resource) if resource.dependent_count > 0 else None
        actions += _offer(machine, resource.status, Action.DELETE, ResourceStatus.REMOVED, reason)
    return actions


def _secondary(spec: KindSpec, resource: ResourceDTO) -> list[AvailableAction]:
    if not spec.supports_secondary or resource.status == ResourceStatus.REMOVING:
        return []
    secondary = resource.secondary_status
    actions = []
    if SECONDARY_MACHINE.is_cancellable(secondary):
        actions.append(AvailableAction(Action.CANCEL_UPDATE, Track.SECONDARY, None, True))
    # one retry per failed track; the primary one wins when both failed
    if (
        secondary is not None
        and resource.status == ResourceStatus.ACTIVE
        and spec.supports_retry
        and SECONDARY_MACHINE.can_transition(secondary, SecondaryStatus.PENDING)
    ):
        actions.append(
            AvailableAction(Action.RETRY, Track.SECONDARY, SecondaryStatus.PENDING, True)
        )
    return actions


def evaluate_actions(resource: ResourceDTO, spec: KindSpec | None = None) -> ActionSet:
    """Compute the operator actions of ``resource``."""
    spec = spec or get_kind_spec(resource.kind)
    machine = PrimaryStateMachine(spec)
    status = resource.status

    if is_transitional(status):
        actions = _read_only(spec, resource, f"{status.value} is in progress")
    elif machine.is_terminal(status):
        actions = []
        if status == ResourceStatus.SUCCESS and spec.supports_rollback:
            # re-deploys the commit of this run as a new run
            actions.append(
                AvailableAction(Action.ROLLBACK, Track.PRIMARY, ResourceStatus.PENDING, True)
            )
    elif status == ResourceStatus.ACTIVE:
        actions = _active(spec, machine, resource)
    elif status == ResourceStatus.FAILED:
        actions = _failed(spec, machine, resource)
    elif status == ResourceStatus.PAUSED and spec.supports_toggle:
        actions = _offer(machine, status, Action.RESUME, ResourceStatus.ACTIVE)
    else:
        actions = []

    actions += _secondary(spec, resource)
    return ActionSet(resource_id=resource.id, status=status, actions=tuple(actions))
