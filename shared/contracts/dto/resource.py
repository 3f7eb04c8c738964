from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import BeforeValidator, Field, model_validator

from shared.contracts.base import WireModel


class ResourceKind(str, Enum):
    DATABASE = "database"
    SCHEMA = "schema"
    DATABASE_USER = "database-user"
    FIREWALL_RULE = "firewall-rule"
    RUNTIME_VERSION = "runtime-version"
    SCHEDULED_TASK = "scheduled-task"
    SUPERVISED_WORKER = "supervised-worker"
    SITE = "site"
    DEPLOYMENT = "deployment"


class ResourceStatus(str, Enum):
    """Primary lifecycle state. A kind uses a subset of these."""

    PENDING = "pending"
    INSTALLING = "installing"
    ACTIVE = "active"
    UPDATING = "updating"
    REMOVING = "removing"
    FAILED = "failed"
    PAUSED = "paused"
    REMOVED = "removed"
    # one-shot pipeline runs (deployments, commands)
    RUNNING = "running"
    SUCCESS = "success"


class SecondaryStatus(str, Enum):
    """In-place update track layered on an active resource. ``None`` means cleared."""

    PENDING = "pending"
    UPDATING = "updating"
    FAILED = "failed"


class Progress(WireModel):
    step: int = Field(ge=0)
    total: int = Field(ge=0)
    label: str | None = None

    @model_validator(mode="after")
    def check_step_within_total(self) -> "Progress":
        if self.step > self.total:
            raise ValueError(f"progress step {self.step} exceeds total {self.total}")
        return self

    @property
    def percent(self) -> int:
        if self.total == 0:
            return 0
        return round(self.step * 100 / self.total)


class StructuralFlags(WireModel):
    is_primary: bool = False
    dependent_count: int = Field(default=0, ge=0)


def _coerce_id(value: Any) -> Any:
    if isinstance(value, int):
        return str(value)
    return value


# Ids are opaque; some endpoints send integers
OpaqueId = Annotated[str, BeforeValidator(_coerce_id)]


class ResourceDTO(WireModel):
    """One provisioned sub-resource on a managed host."""

    id: OpaqueId
    kind: ResourceKind
    name: str | None = None
    status: ResourceStatus
    secondary_status: SecondaryStatus | None = None
    structural_flags: StructuralFlags = Field(default_factory=StructuralFlags)
    error_detail: str | None = None
    secondary_error_detail: str | None = None
    progress: Progress | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def check_error_detail(self) -> "ResourceDTO":
        failed = self.status == ResourceStatus.FAILED
        if failed and not self.error_detail:
            raise ValueError("failed resource must carry error_detail")
        if not failed and self.error_detail is not None:
            raise ValueError(f"error_detail set on {self.status.value} resource")
        if (
            self.secondary_error_detail is not None
            and self.secondary_status != SecondaryStatus.FAILED
        ):
            raise ValueError("secondary_error_detail set without a failed secondary status")
        return self

    @property
    def is_primary(self) -> bool:
        return self.structural_flags.is_primary

    @property
    def dependent_count(self) -> int:
        return self.structural_flags.dependent_count

    @property
    def label(self) -> str:
        return self.name or f"{self.kind.value} #{self.id}"

    def with_changes(self, **changes: Any) -> "ResourceDTO":
        """Return a re-validated copy with ``changes`` applied."""
        data = self.model_dump()
        data.update(changes)
        return type(self).model_validate(data)

    def apply_probe(self, probe: "StatusProbe") -> "ResourceDTO":
        """Return a copy carrying the state reported by a status probe."""
        error_detail = None
        if probe.status == ResourceStatus.FAILED:
            error_detail = probe.error_detail or probe.error_output
        changes: dict[str, Any] = {
            "status": probe.status,
            "secondary_status": probe.secondary_status,
            "error_detail": error_detail,
            "secondary_error_detail": probe.secondary_error_detail,
            "progress": probe.progress.model_dump() if probe.progress else None,
        }
        if probe.updated_at is not None:
            changes["updated_at"] = probe.updated_at
        return self.with_changes(**changes)


class StatusProbe(WireModel):
    """Lightweight status-only payload used by polling."""

    status: ResourceStatus
    secondary_status: SecondaryStatus | None = None
    progress: Progress | None = None
    output: str | None = None
    error_output: str | None = None
    error_detail: str | None = None
    secondary_error_detail: str | None = None
    updated_at: datetime | None = None

    @property
    def lacks_error_detail(self) -> bool:
        """A failure reported without any message; the full resource carries it."""
        return self.status == ResourceStatus.FAILED and not (
            self.error_detail or self.error_output
        )


class DependentDTO(WireModel):
    """A resource that references another one and blocks its removal."""

    id: OpaqueId
    kind: str  # Use str to accept kinds outside this client's registry
    name: str


class ResourceCreate(WireModel):
    """Create request. Body is kind-specific configuration."""

    name: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> dict:
        body = dict(self.config)
        if self.name is not None:
            body.setdefault("name", self.name)
        return body


class ResourceUpdate(WireModel):
    """Update request (version bump, config change)."""

    config: dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> dict:
        return dict(self.config)
