"""Interface to the access request authority consumed by the plugins.

Implementations translate their transport failures into the error kinds of
:mod:`access_plugins.errors`; nothing above this boundary looks at
transport-specific exceptions.
"""

from __future__ import annotations

from typing import Iterator, List, Mapping, Protocol

from access_plugins.context import Context
from access_plugins.errors import NotFound
from access_plugins.models import PluginDataMap, Pong, RawEvent, Request, RequestState, WatchFilter


class EventStream(Protocol):
    """A single streaming subscription.

    Iteration yields raw events until the stream ends. Ending normally means
    the server closed the stream; failures raise classified errors. Ending
    the context passed to ``watch_events`` must unblock iteration promptly.
    """

    def __iter__(self) -> Iterator[RawEvent]: ...

    def close(self) -> None: ...


class AccessRequestAuthority(Protocol):
    def ping(self, ctx: Context) -> Pong: ...

    def create_access_request(
        self, ctx: Context, user: str, roles: List[str], *, reason: str = ""
    ) -> Request: ...

    def get_access_requests(self, ctx: Context, watch_filter: WatchFilter) -> List[Request]: ...

    def set_access_request_state(
        self,
        ctx: Context,
        request_id: str,
        state: RequestState,
        delegator: str,
        *,
        reason: str = "",
    ) -> None: ...

    def watch_events(self, ctx: Context, watch_filter: WatchFilter) -> EventStream: ...

    def get_plugin_data(self, ctx: Context, kind: str, resource: str, plugin: str) -> PluginDataMap: ...

    def update_plugin_data(
        self,
        ctx: Context,
        kind: str,
        resource: str,
        plugin: str,
        set_values: Mapping[str, str],
        expect: Mapping[str, str] | None,
    ) -> None: ...


def get_access_request(authority: AccessRequestAuthority, ctx: Context, request_id: str) -> Request:
    """Fetch a single request, raising NotFound when it no longer exists."""

    requests = authority.get_access_requests(ctx, WatchFilter(id=request_id))
    if not requests:
        raise NotFound(f"no request matching {request_id!r}")
    return requests[0]


__all__ = ["AccessRequestAuthority", "EventStream", "get_access_request"]
