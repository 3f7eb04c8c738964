import uuid

import structlog


def set_correlation_id(correlation_id: str) -> None:
    """Set correlation ID for current context."""
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)


def get_correlation_id() -> str | None:
    """Get correlation ID from current context."""
    return structlog.contextvars.get_contextvars().get("correlation_id")


def new_correlation_id() -> str:
    """Generate a correlation ID, bind it and return it."""
    correlation_id = str(uuid.uuid4())
    set_correlation_id(correlation_id)
    return correlation_id


def bind_view_scope(scope: str) -> None:
    """Tag all logs of the current task with the view scope (e.g. ``host:12``)."""
    structlog.contextvars.bind_contextvars(view_scope=scope)


def clear_context() -> None:
    """Clear all context variables."""
    structlog.contextvars.clear_contextvars()
