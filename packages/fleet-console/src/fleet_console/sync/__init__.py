from .controller import SyncController, ViewClosed
from .live_output import LiveOutputFollower
from .poller import DEFAULT_POLL_INTERVALS, StatusPoller
from .scope import ViewScope

__all__ = [
    "SyncController",
    "ViewClosed",
    "ViewScope",
    "StatusPoller",
    "LiveOutputFollower",
    "DEFAULT_POLL_INTERVALS",
]
