"""Error taxonomy of the control plane client.

Everything raised here is recovered at the dispatcher or sync controller
boundary and turned into an inline error, a failed badge, or a dependency
explanation.
"""

from shared.contracts.dto.resource import DependentDTO


class FleetError(Exception):
    """Base class for control plane client errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class APIError(FleetError):
    """The command API answered with an error status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message or f"API request failed with status {status_code}")
        self.status_code = status_code


class ValidationFailed(APIError):
    """Submission rejected before any remote work began."""

    def __init__(self, message: str, errors: dict[str, list[str]] | None = None):
        super().__init__(422, message or "The given data was invalid.")
        self.errors = errors or {}


class DependencyConflict(FleetError):
    """A destructive transition is blocked by resources depending on the target."""

    def __init__(
        self,
        message: str,
        dependents: list[DependentDTO] | None = None,
        count: int | None = None,
    ):
        super().__init__(message)
        self.dependents = dependents or []
        self.count = count if count is not None else len(self.dependents)


class ActionNotAvailable(FleetError):
    """The action gate does not offer the requested action."""

    def __init__(self, action: str, reason: str):
        super().__init__(f"{action} is not available: {reason}")
        self.action = action
        self.reason = reason


class UnexpectedResponse(FleetError):
    """The server answered with a shape this client does not understand."""
