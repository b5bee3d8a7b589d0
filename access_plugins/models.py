"""Transport-independent access request and event types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Union

from .errors import BadParameter, NotImplementedByServer

Annotations = Dict[str, List[str]]
PluginDataMap = Dict[str, str]

KIND_ACCESS_REQUEST = "access_request"


class RequestState(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DENIED = "DENIED"

    @property
    def is_pending(self) -> bool:
        return self is RequestState.PENDING

    @property
    def is_resolved(self) -> bool:
        return self in (RequestState.APPROVED, RequestState.DENIED)


@dataclass(frozen=True)
class Request:
    """A snapshot of an access request as known by the authority."""

    id: str
    user: str = ""
    roles: List[str] = field(default_factory=list)
    state: RequestState = RequestState.PENDING
    created: datetime | None = None
    request_reason: str = ""
    resolve_reason: str = ""
    suggested_reviewers: List[str] = field(default_factory=list)
    system_annotations: Annotations = field(default_factory=dict)
    resolve_annotations: Annotations = field(default_factory=dict)


@dataclass(frozen=True)
class WatchFilter:
    """Selects which access requests a watch stream reports."""

    kind: str = KIND_ACCESS_REQUEST
    id: str = ""
    user: str = ""
    state: RequestState | None = None

    def matches(self, request: Request) -> bool:
        if self.id and request.id != self.id:
            return False
        if self.user and request.user != self.user:
            return False
        if self.state is not None and request.state is not self.state:
            return False
        return True


class EventType(str, Enum):
    INIT = "INIT"
    PUT = "PUT"
    DELETE = "DELETE"


@dataclass(frozen=True)
class InitEvent:
    """Sentinel delivered once, before anything else, when a stream is ready."""

    type: EventType = field(default=EventType.INIT, init=False)


@dataclass(frozen=True)
class PutEvent:
    """A request was created or updated."""

    request: Request
    type: EventType = field(default=EventType.PUT, init=False)


@dataclass(frozen=True)
class DeleteEvent:
    """A request was deleted or expired. Only its identifier is known."""

    request_id: str
    type: EventType = field(default=EventType.DELETE, init=False)


Event = Union[InitEvent, PutEvent, DeleteEvent]


@dataclass(frozen=True)
class ResourceHeader:
    kind: str
    name: str


@dataclass(frozen=True)
class RawEvent:
    """An event as read off the authority's stream, before validation.

    *resource* is a :class:`Request` for PUT, a :class:`ResourceHeader` for
    DELETE and None for INIT. Anything else is a protocol violation.
    """

    op: str
    resource: object = None


def _parse_version(raw: str) -> tuple[int, ...]:
    core = raw.strip().lstrip("v").split("-", 1)[0].split("+", 1)[0]
    try:
        parts = [int(part) for part in core.split(".")]
    except ValueError as exc:
        raise BadParameter(f"invalid version {raw!r}") from exc
    parts += [0] * (3 - len(parts))
    return tuple(parts)


@dataclass(frozen=True)
class Pong:
    server_version: str
    cluster_name: str
    proxy_public_addr: str = ""
    features: Dict[str, bool] = field(default_factory=dict)

    def assert_server_version(self, min_version: str) -> None:
        """Raise when the server is older than *min_version*."""

        if _parse_version(self.server_version) < _parse_version(min_version):
            raise NotImplementedByServer(
                f"server version {self.server_version} is less than {min_version}"
            )
