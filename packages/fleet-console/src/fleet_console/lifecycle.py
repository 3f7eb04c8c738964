"""Lifecycle state machines.

A resource carries two independent tracks: the primary ``status`` and an
optional secondary in-place update status. Each track is its own small
machine; the action gate consults both.
"""

import structlog

from fleet_console.errors import UnexpectedResponse
from fleet_console.kinds import KindSpec
from shared.contracts.dto.resource import ResourceDTO, ResourceStatus, SecondaryStatus

logger = structlog.get_logger(__name__)

S = ResourceStatus

TRANSITIONAL_STATES = frozenset({S.PENDING, S.INSTALLING, S.REMOVING, S.UPDATING, S.RUNNING})

PRIMARY_TRANSITIONS: dict[ResourceStatus, frozenset[ResourceStatus]] = {
    S.PENDING: frozenset({S.INSTALLING, S.RUNNING, S.FAILED}),
    S.INSTALLING: frozenset({S.ACTIVE, S.FAILED}),
    S.ACTIVE: frozenset({S.UPDATING, S.REMOVING, S.PAUSED}),
    S.UPDATING: frozenset({S.ACTIVE, S.FAILED}),
    S.PAUSED: frozenset({S.ACTIVE}),
    S.REMOVING: frozenset({S.REMOVED, S.FAILED}),
    S.FAILED: frozenset({S.INSTALLING, S.REMOVING, S.REMOVED}),
    S.RUNNING: frozenset({S.SUCCESS, S.FAILED}),
    S.SUCCESS: frozenset(),
    S.REMOVED: frozenset(),
}

# Transitions an operator may request. Everything else is server-driven.
USER_TRANSITIONS = frozenset(
    {
        (S.FAILED, S.INSTALLING),
        (S.FAILED, S.REMOVING),
        (S.FAILED, S.REMOVED),
        (S.ACTIVE, S.REMOVING),
        (S.ACTIVE, S.UPDATING),
        (S.ACTIVE, S.PAUSED),
        (S.PAUSED, S.ACTIVE),
    }
)

CANCELLABLE_SECONDARY = frozenset(
    {SecondaryStatus.PENDING, SecondaryStatus.UPDATING, SecondaryStatus.FAILED}
)

# None is the cleared state of the secondary track
SECONDARY_TRANSITIONS: dict[SecondaryStatus | None, frozenset[SecondaryStatus | None]] = {
    None: frozenset({SecondaryStatus.PENDING}),
    SecondaryStatus.PENDING: frozenset({SecondaryStatus.UPDATING, SecondaryStatus.FAILED, None}),
    SecondaryStatus.UPDATING: frozenset({SecondaryStatus.FAILED, None}),
    SecondaryStatus.FAILED: frozenset({SecondaryStatus.PENDING, None}),
}


def is_transitional(status: ResourceStatus) -> bool:
    return status in TRANSITIONAL_STATES


def has_pending_work(resource: ResourceDTO) -> bool:
    """True while either track is waiting on remote work."""
    return is_transitional(resource.status) or resource.secondary_status in (
        SecondaryStatus.PENDING,
        SecondaryStatus.UPDATING,
    )


class PrimaryStateMachine:
    """Primary status track, restricted to the states a kind uses."""

    def __init__(self, spec: KindSpec):
        self.spec = spec

    @property
    def initial(self) -> ResourceStatus:
        return S.PENDING

    def allows(self, status: ResourceStatus) -> bool:
        return status in self.spec.states

    def successors(self, status: ResourceStatus) -> frozenset[ResourceStatus]:
        return PRIMARY_TRANSITIONS.get(status, frozenset()) & self.spec.states

    def is_terminal(self, status: ResourceStatus) -> bool:
        return not self.successors(status)

    def can_transition(
        self, current: ResourceStatus, target: ResourceStatus, *, user: bool = False
    ) -> bool:
        if not self.allows(current) or target not in self.successors(current):
            return False
        if user and (current, target) not in USER_TRANSITIONS:
            return False
        return True

    def observe(
        self, previous: ResourceStatus | None, observed: ResourceStatus
    ) -> ResourceStatus:
        """Accept a server-reported state.

        Polling can miss short-lived states, so skipped edges are accepted.
        A state the kind never uses is an unexpected response.
        """
        if not self.allows(observed):
            raise UnexpectedResponse(
                f"{self.spec.kind.value} cannot be {observed.value}"
            )
        if previous is not None and previous != observed:
            if observed not in self.successors(previous):
                logger.debug(
                    "status_edge_skipped",
                    kind=self.spec.kind.value,
                    previous=previous.value,
                    observed=observed.value,
                )
        return observed


class SecondaryStateMachine:
    """In-place update track: pending -> updating -> cleared, or failed."""

    def can_transition(
        self, current: SecondaryStatus | None, target: SecondaryStatus | None
    ) -> bool:
        return target in SECONDARY_TRANSITIONS[current]

    def is_cancellable(self, current: SecondaryStatus | None) -> bool:
        return current in CANCELLABLE_SECONDARY
