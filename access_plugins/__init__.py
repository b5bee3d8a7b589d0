"""Core of the access request notification plugins."""

from .context import Context  # noqa: F401
from .errors import (  # noqa: F401
    AccessError,
    BadParameter,
    CacheClosed,
    Canceled,
    CompareFailed,
    ConnectionProblem,
    DeadlineExceeded,
    ErrorKind,
    NotFound,
    NotImplementedByServer,
    StreamClosed,
)
from .models import (  # noqa: F401
    DeleteEvent,
    Event,
    EventType,
    InitEvent,
    Pong,
    PutEvent,
    Request,
    RequestState,
    WatchFilter,
)

__all__ = [
    "Context",
    "AccessError",
    "BadParameter",
    "CacheClosed",
    "Canceled",
    "CompareFailed",
    "ConnectionProblem",
    "DeadlineExceeded",
    "ErrorKind",
    "NotFound",
    "NotImplementedByServer",
    "StreamClosed",
    "DeleteEvent",
    "Event",
    "EventType",
    "InitEvent",
    "Pong",
    "PutEvent",
    "Request",
    "RequestState",
    "WatchFilter",
]
