"""Command dispatcher: operator intent to remote mutation.

Every request goes through the action gate, the dependency guard for
destructive actions and an optional confirmation step. At most one
mutating request per resource is in flight. Only creation is applied
optimistically; every other transition waits for the first confirming
refetch. Remote failures never escape: they come back as a
``DispatchResult``.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
import inspect
from typing import Any

import httpx
from pydantic import BaseModel, Field
import structlog

from fleet_console.errors import (
    ActionNotAvailable,
    DependencyConflict,
    FleetError,
    ValidationFailed,
)
from fleet_console.gate import Action, Track, evaluate_actions
from fleet_console.guard import DependencyGuard
from fleet_console.kinds import KindSpec
from fleet_console.sync import SyncController, ViewClosed
from shared.contracts.dto.resource import (
    DependentDTO,
    ResourceCreate,
    ResourceDTO,
    ResourceKind,
    ResourceStatus,
    ResourceUpdate,
    SecondaryStatus,
)
from shared.contracts.dto.run import CommandRunDTO
from shared.logging import new_correlation_id

logger = structlog.get_logger(__name__)


class DispatchOutcome(str, Enum):
    ACCEPTED = "accepted"
    # idempotent repeat of something already underway; nothing was sent
    NOOP = "noop"
    SUPPRESSED = "suppressed"
    CANCELLED = "cancelled"
    BLOCKED = "blocked"
    REJECTED = "rejected"
    UNAVAILABLE = "unavailable"
    FAILED = "failed"


class DispatchResult(BaseModel):
    outcome: DispatchOutcome
    action: str
    resource_id: str | None = None
    message: str | None = None
    field_errors: dict[str, list[str]] = Field(default_factory=dict)
    dependents: list[DependentDTO] = Field(default_factory=list)
    resource: ResourceDTO | None = None
    run: CommandRunDTO | None = None
    correlation_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome in (
            DispatchOutcome.ACCEPTED,
            DispatchOutcome.NOOP,
            DispatchOutcome.SUPPRESSED,
        )


@dataclass(frozen=True)
class ConfirmationRequest:
    action: Action
    resource: ResourceDTO
    message: str


Confirm = Callable[[ConfirmationRequest], bool | Awaitable[bool]]


def _confirmation_message(action: Action, resource: ResourceDTO) -> str:
    if action == Action.ROLLBACK:
        return f"Roll back to deployment {resource.label}?"
    return f"Are you sure you want to remove {resource.label}?"


class CommandDispatcher:
    def __init__(
        self,
        view: SyncController,
        confirm: Confirm | None = None,
        guard: DependencyGuard | None = None,
    ):
        self.view = view
        self.api = view.api
        self.confirm = confirm
        self.guard = guard or DependencyGuard(view.api)
        self._in_flight: set[tuple[str, str]] = set()

    def in_flight(self, kind: ResourceKind | str, resource_id: str) -> bool:
        return (self.view.spec(kind).prop, resource_id) in self._in_flight

    async def _confirmed(self, action: Action, resource: ResourceDTO) -> bool:
        if self.confirm is None:
            return True
        answer = self.confirm(
            ConfirmationRequest(action, resource, _confirmation_message(action, resource))
        )
        if inspect.isawaitable(answer):
            answer = await answer
        return bool(answer)

    def _result(
        self,
        spec: KindSpec,
        resource_id: str,
        action: Action,
        outcome: DispatchOutcome,
        **kwargs,
    ) -> DispatchResult:
        kwargs.setdefault("resource", self.view.collection(spec.kind).get(resource_id))
        return DispatchResult(
            outcome=outcome, action=action.value, resource_id=resource_id, **kwargs
        )

    async def _dispatch(
        self,
        kind: ResourceKind | str,
        resource_id: str,
        action: Action,
        send: Callable[[KindSpec, ResourceDTO], Awaitable[Any]],
        track: Track = Track.PRIMARY,
        shield: bool = False,
    ) -> DispatchResult:
        spec = self.view.spec(kind)
        collection = self.view.collection(spec.kind)
        resource = collection.get(resource_id)

        if resource is None or collection.is_optimistic(resource_id):
            return self._result(
                spec,
                resource_id,
                action,
                DispatchOutcome.UNAVAILABLE,
                message="Resource is not loaded yet",
            )

        key = (spec.prop, resource_id)
        if key in self._in_flight:
            logger.debug(
                "dispatch_suppressed",
                kind=spec.kind.value,
                resource_id=resource_id,
                action=action.value,
            )
            return self._result(
                spec,
                resource_id,
                action,
                DispatchOutcome.SUPPRESSED,
                message="A request is already in flight",
            )

        # held across the guard and the confirmation, both of which suspend
        self._in_flight.add(key)
        try:
            return await self._submit(spec, resource, action, send, track, shield)
        finally:
            self._in_flight.discard(key)

    async def _submit(
        self,
        spec: KindSpec,
        resource: ResourceDTO,
        action: Action,
        send: Callable[[KindSpec, ResourceDTO], Awaitable[Any]],
        track: Track,
        shield: bool,
    ) -> DispatchResult:
        resource_id = resource.id
        log = logger.bind(kind=spec.kind.value, resource_id=resource_id, action=action.value)

        def result(outcome: DispatchOutcome, **kwargs) -> DispatchResult:
            return self._result(spec, resource_id, action, outcome, **kwargs)

        if self._already_underway(action, track, resource):
            log.debug("dispatch_noop", status=resource.status.value)
            return result(DispatchOutcome.NOOP, message=f"{action.value} is already underway")

        actions = evaluate_actions(resource, spec)
        offered = actions.get(action, track)
        if offered is not None and offered.destructive:
            try:
                await self.guard.check(resource, spec, self.view.scope.params)
            except DependencyConflict as e:
                return result(DispatchOutcome.BLOCKED, message=e.message, dependents=e.dependents)

        try:
            offered = actions.require(action, track)
        except ActionNotAvailable as e:
            log.debug("dispatch_unavailable", reason=e.reason)
            return result(DispatchOutcome.UNAVAILABLE, message=e.reason)

        if offered.destructive and not await self._confirmed(action, resource):
            return result(DispatchOutcome.CANCELLED)

        correlation_id = new_correlation_id()
        log.info("dispatch_started", track=track.value, correlation_id=correlation_id)
        try:
            request = send(spec, resource)
            response = await (asyncio.shield(request) if shield else request)
            log.info("dispatch_accepted", correlation_id=correlation_id)
            # success is only claimed from a confirming refetch; the resource
            # stays in flight until it lands
            await self.view.refresh([spec.prop])
        except ValidationFailed as e:
            log.info("dispatch_rejected", errors=e.errors)
            return result(
                DispatchOutcome.REJECTED,
                message=e.message,
                field_errors=e.errors,
                correlation_id=correlation_id,
            )
        except DependencyConflict as e:
            return result(
                DispatchOutcome.BLOCKED,
                message=e.message,
                dependents=e.dependents,
                correlation_id=correlation_id,
            )
        except (httpx.HTTPError, FleetError, ViewClosed) as e:
            log.warning("dispatch_failed", error=str(e), error_type=type(e).__name__)
            return result(
                DispatchOutcome.FAILED, message=str(e), correlation_id=correlation_id
            )

        if isinstance(response, ResourceDTO) and response.id != resource_id:
            # the request produced a new resource (a rollback run)
            return DispatchResult(
                outcome=DispatchOutcome.ACCEPTED,
                action=action.value,
                resource_id=response.id,
                resource=self.view.collection(spec.kind).get(response.id) or response,
                correlation_id=correlation_id,
            )
        return result(DispatchOutcome.ACCEPTED, correlation_id=correlation_id)

    @staticmethod
    def _already_underway(action: Action, track: Track, resource: ResourceDTO) -> bool:
        if action == Action.RETRY and track == Track.PRIMARY:
            return resource.status == ResourceStatus.INSTALLING
        if action == Action.RETRY and track == Track.SECONDARY:
            return resource.secondary_status in (SecondaryStatus.PENDING, SecondaryStatus.UPDATING)
        if action == Action.CANCEL_UPDATE:
            return resource.secondary_status is None
        return False

    # --- Operations ---

    async def create(self, kind: ResourceKind | str, payload: ResourceCreate) -> DispatchResult:
        """Create a resource, showing it as ``pending`` until the server answers."""
        spec = self.view.spec(kind)
        collection = self.view.collection(spec.kind)
        placeholder = collection.add_placeholder(payload.name, payload.config)
        self.view.notify({spec.prop})

        correlation_id = new_correlation_id()
        log = logger.bind(kind=spec.kind.value, correlation_id=correlation_id)
        ticket = collection.next_ticket()
        try:
            created = await self.api.create_resource(spec, self.view.scope.params, payload)
        except ValidationFailed as e:
            collection.discard(placeholder.id)
            self.view.notify({spec.prop})
            log.info("create_rejected", errors=e.errors)
            return DispatchResult(
                outcome=DispatchOutcome.REJECTED,
                action="create",
                message=e.message,
                field_errors=e.errors,
                correlation_id=correlation_id,
            )
        except (httpx.HTTPError, FleetError) as e:
            collection.discard(placeholder.id)
            self.view.notify({spec.prop})
            log.warning("create_failed", error=str(e), error_type=type(e).__name__)
            return DispatchResult(
                outcome=DispatchOutcome.FAILED,
                action="create",
                message=str(e),
                correlation_id=correlation_id,
            )

        try:
            resource = collection.resolve_placeholder(placeholder.id, created, ticket)
        except FleetError as e:
            # a state the kind never uses; resolving already dropped the placeholder
            self.view.notify({spec.prop})
            log.warning("create_failed", error=str(e), error_type=type(e).__name__)
            return DispatchResult(
                outcome=DispatchOutcome.FAILED,
                action="create",
                resource_id=created.id,
                message=str(e),
                correlation_id=correlation_id,
            )
        log.info("create_accepted", resource_id=resource.id, status=resource.status.value)
        self.view.notify({spec.prop})
        self.view.ensure_tracking(spec.kind)
        return DispatchResult(
            outcome=DispatchOutcome.ACCEPTED,
            action="create",
            resource_id=resource.id,
            resource=resource,
            correlation_id=correlation_id,
        )

    async def update(
        self, kind: ResourceKind | str, resource_id: str, payload: ResourceUpdate
    ) -> DispatchResult:
        return await self._dispatch(
            kind,
            resource_id,
            Action.UPDATE,
            lambda spec, r: self.api.update_resource(spec, self.view.scope.params, r.id, payload),
            track=Track.SECONDARY if self.view.spec(kind).supports_secondary else Track.PRIMARY,
        )

    async def delete(self, kind: ResourceKind | str, resource_id: str) -> DispatchResult:
        return await self._dispatch(
            kind,
            resource_id,
            Action.DELETE,
            lambda spec, r: self.api.delete_resource(spec, self.view.scope.params, r.id),
        )

    async def retry(
        self, kind: ResourceKind | str, resource_id: str, track: Track = Track.PRIMARY
    ) -> DispatchResult:
        return await self._dispatch(
            kind,
            resource_id,
            Action.RETRY,
            lambda spec, r: self.api.retry(spec, self.view.scope.params, r.id, track.value),
            track=track,
            shield=True,
        )

    async def cancel_update(self, kind: ResourceKind | str, resource_id: str) -> DispatchResult:
        return await self._dispatch(
            kind,
            resource_id,
            Action.CANCEL_UPDATE,
            lambda spec, r: self.api.cancel_update(spec, self.view.scope.params, r.id),
            track=Track.SECONDARY,
            shield=True,
        )

    async def toggle(self, kind: ResourceKind | str, resource_id: str) -> DispatchResult:
        resource = self.view.collection(kind).get(resource_id)
        paused = resource is not None and resource.status == ResourceStatus.PAUSED
        return await self._dispatch(
            kind,
            resource_id,
            Action.RESUME if paused else Action.TOGGLE_PAUSE,
            lambda spec, r: self.api.toggle(spec, self.view.scope.params, r.id),
        )

    async def run_now(self, kind: ResourceKind | str, resource_id: str) -> DispatchResult:
        """Run a scheduled task once, outside its schedule."""
        return await self._dispatch(
            kind,
            resource_id,
            Action.RUN_NOW,
            lambda spec, r: self.api.run_now(spec, self.view.scope.params, r.id),
        )

    async def restart(self, kind: ResourceKind | str, resource_id: str) -> DispatchResult:
        return await self._dispatch(
            kind,
            resource_id,
            Action.RESTART,
            lambda spec, r: self.api.restart(spec, self.view.scope.params, r.id),
        )

    async def set_default(self, site_id: str) -> DispatchResult:
        """Make ``site_id`` the site answering on the host's bare IP address."""
        return await self._dispatch(
            ResourceKind.SITE,
            site_id,
            Action.SET_DEFAULT,
            lambda spec, r: self.api.set_default(spec, self.view.scope.params, r.id),
        )

    async def unset_default(self, site_id: str) -> DispatchResult:
        return await self._dispatch(
            ResourceKind.SITE,
            site_id,
            Action.UNSET_DEFAULT,
            lambda spec, r: self.api.unset_default(spec, self.view.scope.params, r.id),
        )

    async def rollback(self, deployment_id: str) -> DispatchResult:
        """Start a new deployment run re-deploying ``deployment_id``'s commit."""
        return await self._dispatch(
            ResourceKind.DEPLOYMENT,
            deployment_id,
            Action.ROLLBACK,
            lambda spec, r: self._rollback(r.id),
        )

    async def _rollback(self, deployment_id: str) -> ResourceDTO:
        collection = self.view.collection(ResourceKind.DEPLOYMENT)
        ticket = collection.next_ticket()
        run = await self.api.rollback_deployment(self.view.scope.params, deployment_id)
        collection.apply(run, ticket)
        self.view.ensure_tracking(ResourceKind.DEPLOYMENT)
        return run
