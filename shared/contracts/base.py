from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for payloads exchanged with the control plane (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class EventMeta(WireModel):
    """Metadata for all channel events."""

    version: Literal["1"] = "1"
    correlation_id: str | None = None
    emitted_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ErrorBody(WireModel):
    """Structured 4xx body returned by the command API."""

    message: str = ""
    errors: dict[str, list[str]] = Field(default_factory=dict)
    dependents: list[dict] = Field(default_factory=list)
