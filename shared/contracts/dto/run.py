from datetime import datetime

from pydantic import Field

from shared.contracts.base import WireModel
from shared.contracts.dto.resource import OpaqueId, ResourceStatus


class CommandRunCreate(WireModel):
    """Ad-hoc command to execute inside a site's directory."""

    command: str = Field(min_length=1)


class CommandRunDTO(WireModel):
    """Command run response."""

    id: OpaqueId
    command: str
    status: ResourceStatus
    output: str = ""
    error_output: str | None = None
    exit_code: int | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None


class TaskRunDTO(WireModel):
    """One execution of a scheduled task, manual or on schedule."""

    id: OpaqueId
    started_at: datetime
    completed_at: datetime | None = None
    exit_code: int | None = None
    output: str | None = None
    error_output: str | None = None
    duration_ms: int | None = None
    was_successful: bool = False
