"""Deployment pipeline: deploy, rollback and ad-hoc commands for one site."""

from collections.abc import Callable

import httpx
from pydantic import ValidationError
import structlog

from fleet_console.dispatcher import CommandDispatcher, DispatchOutcome, DispatchResult
from fleet_console.errors import FleetError, ValidationFailed
from fleet_console.kinds import PollWeight
from fleet_console.sync import LiveOutputFollower, SyncController
from shared.contracts.dto.resource import ResourceCreate, ResourceDTO, ResourceKind, StatusProbe
from shared.contracts.dto.run import CommandRunCreate, CommandRunDTO
from shared.logging import new_correlation_id

logger = structlog.get_logger(__name__)

OutputCallback = Callable[[str], None]


class DeploymentPipeline:
    """Deployments of the site a view is scoped to.

    The view must mount the deployment kind and be scoped to a site.
    """

    def __init__(self, view: SyncController, dispatcher: CommandDispatcher | None = None):
        if view.scope.site_id is None:
            raise ValueError("Deployment pipeline needs a site scope")
        self.view = view
        self.dispatcher = dispatcher or CommandDispatcher(view)
        self.api = view.api
        self.deployments = view.collection(ResourceKind.DEPLOYMENT)
        self.command_history: list[CommandRunDTO] = []

    def history(self) -> list[ResourceDTO]:
        """Deployments, newest first."""
        return sorted(
            self.deployments,
            key=lambda d: (d.created_at is not None, d.created_at),
            reverse=True,
        )

    def latest(self) -> ResourceDTO | None:
        history = self.history()
        return history[0] if history else None

    async def follow(
        self, deployment_id: str, on_output: OutputCallback | None = None
    ) -> StatusProbe | None:
        """Stream a run's output until it finishes; history is refetched once after."""
        return await self.view.follow_run(ResourceKind.DEPLOYMENT, deployment_id, on_output)

    async def _maybe_follow(
        self, result: DispatchResult, follow: bool, on_output: OutputCallback | None
    ) -> DispatchResult:
        if not (result.outcome == DispatchOutcome.ACCEPTED and follow and result.resource_id):
            return result
        final = await self.follow(result.resource_id, on_output)
        result.resource = self.deployments.get(result.resource_id) or result.resource
        logger.info(
            "deployment_finished",
            deployment_id=result.resource_id,
            status=final.status.value if final else None,
        )
        if final is None:
            result.outcome = DispatchOutcome.FAILED
            result.message = f"Deployment {result.resource_id} no longer exists"
        return result

    async def deploy(
        self,
        payload: ResourceCreate | None = None,
        follow: bool = True,
        on_output: OutputCallback | None = None,
    ) -> DispatchResult:
        result = await self.dispatcher.create(ResourceKind.DEPLOYMENT, payload or ResourceCreate())
        return await self._maybe_follow(result, follow, on_output)

    async def rollback(
        self,
        deployment_id: str,
        follow: bool = True,
        on_output: OutputCallback | None = None,
    ) -> DispatchResult:
        result = await self.dispatcher.rollback(deployment_id)
        return await self._maybe_follow(result, follow, on_output)

    async def run_command(
        self, command: str, on_output: OutputCallback | None = None
    ) -> DispatchResult:
        """Run an ad-hoc command in the site directory and stream its output."""
        params = self.view.scope.params
        correlation_id = new_correlation_id()
        try:
            payload = CommandRunCreate(command=command)
        except ValidationError:
            return DispatchResult(
                outcome=DispatchOutcome.REJECTED,
                action="command",
                message="The given data was invalid.",
                field_errors={"command": ["The command field is required."]},
                correlation_id=correlation_id,
            )

        try:
            run = await self.api.run_command(params, payload)
        except ValidationFailed as e:
            return DispatchResult(
                outcome=DispatchOutcome.REJECTED,
                action="command",
                message=e.message,
                field_errors=e.errors,
                correlation_id=correlation_id,
            )
        except (httpx.HTTPError, FleetError) as e:
            logger.warning("command_start_failed", error=str(e), error_type=type(e).__name__)
            return DispatchResult(
                outcome=DispatchOutcome.FAILED,
                action="command",
                message=str(e),
                correlation_id=correlation_id,
            )

        logger.info("command_started", command_id=run.id, correlation_id=correlation_id)
        follower = LiveOutputFollower(
            fetch=lambda: self.api.get_command_status(params, run.id),
            interval=self.view.intervals[PollWeight.LIVE],
            on_output=on_output,
            on_finished=self._refresh_command_history,
            name=f"command:{run.id}",
        )
        final = await self.view.spawn(follower.follow(), name=f"command:{run.id}")
        if final is None:
            return DispatchResult(
                outcome=DispatchOutcome.FAILED,
                action="command",
                resource_id=run.id,
                message=f"Command run {run.id} no longer exists",
                correlation_id=correlation_id,
            )

        finished = run.model_copy(
            update={
                "status": final.status,
                "output": follower.output,
                "error_output": follower.error_output or None,
            }
        )
        return DispatchResult(
            outcome=DispatchOutcome.ACCEPTED,
            action="command",
            resource_id=run.id,
            run=finished,
            correlation_id=correlation_id,
        )

    async def _refresh_command_history(self, _probe: StatusProbe | None) -> None:
        try:
            self.command_history = await self.api.list_commands(self.view.scope.params)
        except (httpx.HTTPError, FleetError) as e:
            logger.warning(
                "command_history_refetch_failed", error=str(e), error_type=type(e).__name__
            )
