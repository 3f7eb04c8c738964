"""HTTP client for the control plane command API."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError
import structlog

from fleet_console.errors import (
    APIError,
    DependencyConflict,
    FleetError,
    UnexpectedResponse,
    ValidationFailed,
)
from fleet_console.kinds import KindSpec, get_kind_spec
from shared.contracts.base import ErrorBody
from shared.contracts.dto.resource import (
    DependentDTO,
    ResourceCreate,
    ResourceDTO,
    ResourceKind,
    ResourceUpdate,
    StatusProbe,
)
from shared.contracts.dto.run import CommandRunCreate, CommandRunDTO, TaskRunDTO
from shared.logging import get_correlation_id

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

COMMANDS_PATH = "servers/{host_id}/sites/{site_id}/commands"

Params = Mapping[str, str]


class FleetAPIClient:
    """HTTP client for resource lifecycle endpoints."""

    def __init__(self, base_url: str, timeout: float = 30.0) -> None:
        self.base_url = base_url.rstrip("/")
        if self.base_url.endswith("/api"):
            raise RuntimeError("FLEET_API_URL must not include /api")
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                follow_redirects=True,
                timeout=self.timeout,
            )
        return self._client

    def _api_path(self, path: str) -> str:
        cleaned = path.lstrip("/")
        if cleaned.startswith("api/"):
            raise ValueError("API path should not include /api prefix")
        return f"/api/{cleaned}"

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        headers = dict(kwargs.pop("headers", None) or {})
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id

        resp = await client.request(method, self._api_path(path), headers=headers, **kwargs)
        logger.debug(
            "api_request",
            method=method,
            path=path,
            status_code=resp.status_code,
        )
        if resp.is_error:
            raise self._error_from(resp)
        return resp

    def _error_from(self, resp: httpx.Response) -> FleetError:
        try:
            body = ErrorBody.model_validate(resp.json())
        except (ValueError, ValidationError):
            body = ErrorBody(message=resp.reason_phrase)

        if resp.status_code == httpx.codes.UNPROCESSABLE_ENTITY:
            return ValidationFailed(body.message, body.errors)
        if resp.status_code == httpx.codes.CONFLICT and body.dependents:
            try:
                dependents = [DependentDTO.model_validate(d) for d in body.dependents]
            except ValidationError:
                dependents = []
            return DependencyConflict(body.message, dependents, count=len(body.dependents))
        return APIError(resp.status_code, body.message)

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise UnexpectedResponse(f"Response is not JSON: {e}") from e

    @staticmethod
    def _parse(model: type[ModelT], data: Any) -> ModelT:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise UnexpectedResponse(
                f"Unexpected {model.__name__} payload: {e.error_count()} errors"
            ) from e

    def _parse_resource(self, spec: KindSpec, data: Any) -> ResourceDTO:
        # Kind-specific endpoints do not always echo the kind back
        if isinstance(data, dict):
            data = {"kind": spec.kind.value, **data}
        return self._parse(ResourceDTO, data)

    @staticmethod
    def _unwrap_list(data: Any) -> list:
        if isinstance(data, dict) and "data" in data:
            data = data["data"]
        if not isinstance(data, list):
            raise UnexpectedResponse(f"Expected a list, got {type(data).__name__}")
        return data

    # --- Resources ---

    async def list_resources(self, spec: KindSpec, params: Params) -> list[ResourceDTO]:
        resp = await self._request("GET", spec.collection_path(params))
        items = self._unwrap_list(self._json(resp))
        return [self._parse_resource(spec, item) for item in items]

    async def get_resource(self, spec: KindSpec, params: Params, resource_id: str) -> ResourceDTO:
        resp = await self._request("GET", spec.item_path(params, resource_id))
        return self._parse_resource(spec, self._json(resp))

    async def create_resource(
        self, spec: KindSpec, params: Params, payload: ResourceCreate
    ) -> ResourceDTO:
        resp = await self._request("POST", spec.collection_path(params), json=payload.to_wire())
        return self._parse_resource(spec, self._json(resp))

    async def update_resource(
        self, spec: KindSpec, params: Params, resource_id: str, payload: ResourceUpdate
    ) -> ResourceDTO | None:
        resp = await self._request(
            "PATCH", spec.item_path(params, resource_id), json=payload.to_wire()
        )
        if not resp.content:
            return None
        return self._parse_resource(spec, self._json(resp))

    async def delete_resource(self, spec: KindSpec, params: Params, resource_id: str) -> None:
        await self._request("DELETE", spec.item_path(params, resource_id))

    async def retry(
        self, spec: KindSpec, params: Params, resource_id: str, track: str = "primary"
    ) -> None:
        await self._request(
            "POST", f"{spec.item_path(params, resource_id)}/retry", json={"track": track}
        )

    async def cancel_update(self, spec: KindSpec, params: Params, resource_id: str) -> None:
        await self._request("POST", f"{spec.item_path(params, resource_id)}/cancel-update")

    async def toggle(self, spec: KindSpec, params: Params, resource_id: str) -> None:
        await self._request("POST", f"{spec.item_path(params, resource_id)}/toggle")

    async def run_now(self, spec: KindSpec, params: Params, resource_id: str) -> None:
        await self._request("POST", f"{spec.item_path(params, resource_id)}/run")

    async def restart(self, spec: KindSpec, params: Params, resource_id: str) -> None:
        await self._request("POST", f"{spec.item_path(params, resource_id)}/restart")

    async def set_default(self, spec: KindSpec, params: Params, resource_id: str) -> None:
        await self._request("PATCH", f"{spec.item_path(params, resource_id)}/set-default")

    async def unset_default(self, spec: KindSpec, params: Params, resource_id: str) -> None:
        await self._request("PATCH", f"{spec.item_path(params, resource_id)}/unset-default")

    async def list_task_runs(
        self, spec: KindSpec, params: Params, resource_id: str, days: int = 7
    ) -> list[TaskRunDTO]:
        """Runs of a scheduled task within the last ``days``, newest first."""
        resp = await self._request(
            "GET", f"{spec.item_path(params, resource_id)}/runs", params={"days": days}
        )
        items = self._unwrap_list(self._json(resp))
        return [self._parse(TaskRunDTO, item) for item in items]

    async def get_status(self, spec: KindSpec, params: Params, resource_id: str) -> StatusProbe:
        resp = await self._request("GET", f"{spec.item_path(params, resource_id)}/status")
        return self._parse(StatusProbe, self._json(resp))

    async def list_dependents(
        self, spec: KindSpec, params: Params, resource_id: str
    ) -> list[DependentDTO]:
        resp = await self._request("GET", f"{spec.item_path(params, resource_id)}/dependents")
        items = self._unwrap_list(self._json(resp))
        return [self._parse(DependentDTO, item) for item in items]

    # --- Deployments and commands ---

    async def rollback_deployment(self, params: Params, deployment_id: str) -> ResourceDTO:
        spec = get_kind_spec(ResourceKind.DEPLOYMENT)
        resp = await self._request("POST", f"{spec.item_path(params, deployment_id)}/rollback")
        return self._parse_resource(spec, self._json(resp))

    async def run_command(self, params: Params, payload: CommandRunCreate) -> CommandRunDTO:
        resp = await self._request("POST", COMMANDS_PATH.format(**params), json=payload.to_wire())
        return self._parse(CommandRunDTO, self._json(resp))

    async def get_command_status(self, params: Params, command_id: str) -> StatusProbe:
        resp = await self._request(
            "GET", f"{COMMANDS_PATH.format(**params)}/{command_id}/status"
        )
        return self._parse(StatusProbe, self._json(resp))

    async def list_commands(self, params: Params) -> list[CommandRunDTO]:
        resp = await self._request("GET", COMMANDS_PATH.format(**params))
        items = self._unwrap_list(self._json(resp))
        return [self._parse(CommandRunDTO, item) for item in items]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
