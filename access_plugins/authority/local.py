"""A self-contained authority backed by a SQL database.

It implements the full :class:`AccessRequestAuthority` interface in-process,
including watch streams, so plugins can run and be tested without a remote
server.
"""

from __future__ import annotations

import json
import queue
import threading
from datetime import UTC, datetime
from typing import Any, Iterator, List, Mapping
from uuid import uuid4

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from access_plugins.context import Context
from access_plugins.errors import BadParameter, CompareFailed, ConnectionProblem, NotFound
from access_plugins.models import (
    KIND_ACCESS_REQUEST,
    EventType,
    PluginDataMap,
    Pong,
    RawEvent,
    Request,
    RequestState,
    ResourceHeader,
    WatchFilter,
)

from .db import Base, create_authority_engine, create_session_factory, session_scope
from .tables import AccessRequestRecord, PluginDataRecord

DEFAULT_SERVER_VERSION = "6.1.0"

_ALLOWED_TRANSITIONS = {
    RequestState.PENDING: {RequestState.APPROVED, RequestState.DENIED},
    RequestState.APPROVED: set(),
    RequestState.DENIED: set(),
}


class _Closed:
    def __init__(self, error: BaseException | None = None) -> None:
        self.error = error


class LocalEventStream:
    """Watch subscription fed by :class:`LocalAuthority` publications."""

    def __init__(self, authority: "LocalAuthority", ctx: Context, watch_filter: WatchFilter) -> None:
        self._authority = authority
        self._ctx = ctx
        self.filter = watch_filter
        self._queue: "queue.Queue[RawEvent | _Closed]" = queue.Queue()
        self._queue.put(RawEvent(op=EventType.INIT.value))
        ctx.add_done_callback(self._on_ctx_done)

    def _on_ctx_done(self, _ctx: Context) -> None:
        self._queue.put(_Closed())

    def deliver(self, event: RawEvent) -> None:
        self._queue.put(event)

    def disconnect(self, error: BaseException | None) -> None:
        self._queue.put(_Closed(error))

    def __iter__(self) -> Iterator[RawEvent]:
        while True:
            item = self._queue.get()
            if isinstance(item, _Closed):
                if item.error is not None:
                    raise item.error
                return
            yield item

    def close(self) -> None:
        self._ctx.remove_done_callback(self._on_ctx_done)
        self._authority._unsubscribe(self)


def _request_from_record(record: AccessRequestRecord) -> Request:
    return Request(
        id=record.id,
        user=record.user,
        roles=json.loads(record.roles_json),
        state=RequestState(record.state),
        created=record.created_at,
        request_reason=record.request_reason,
        resolve_reason=record.resolve_reason,
        suggested_reviewers=json.loads(record.suggested_reviewers_json),
        system_annotations=json.loads(record.system_annotations_json),
        resolve_annotations=json.loads(record.resolve_annotations_json),
    )


class LocalAuthority:
    """SQL-backed access request authority with in-process event streams."""

    def __init__(
        self,
        database_url: str,
        *,
        cluster_name: str = "local",
        server_version: str = DEFAULT_SERVER_VERSION,
        create_schema: bool = True,
        logger: Any | None = None,
    ) -> None:
        self.cluster_name = cluster_name
        self.server_version = server_version
        self.engine = create_authority_engine(database_url)
        self._sessions = create_session_factory(self.engine)
        self._lock = threading.Lock()
        self._streams: List[LocalEventStream] = []
        self._log = logger or structlog.get_logger().bind(component="local_authority")
        if create_schema:
            Base.metadata.create_all(self.engine)

    def ping(self, ctx: Context) -> Pong:
        ctx.raise_if_done()
        return Pong(server_version=self.server_version, cluster_name=self.cluster_name)

    def create_access_request(
        self,
        ctx: Context,
        user: str,
        roles: List[str],
        *,
        reason: str = "",
        suggested_reviewers: List[str] | None = None,
    ) -> Request:
        ctx.raise_if_done()
        if not user:
            raise BadParameter("access request requires a user")
        if not roles:
            raise BadParameter("access request requires at least one role")

        with session_scope(self._sessions) as session:
            record = AccessRequestRecord(
                id=str(uuid4()),
                user=user,
                roles_json=json.dumps(list(roles)),
                state=RequestState.PENDING.value,
                created_at=datetime.now(UTC),
                request_reason=reason,
                suggested_reviewers_json=json.dumps(list(suggested_reviewers or [])),
            )
            session.add(record)
            session.flush()
            request = _request_from_record(record)

        self._log.info("access_request_created", request_id=request.id, user=user)
        self._publish(RawEvent(op=EventType.PUT.value, resource=request), request)
        return request

    def get_access_requests(self, ctx: Context, watch_filter: WatchFilter) -> List[Request]:
        ctx.raise_if_done()
        stmt = select(AccessRequestRecord).order_by(AccessRequestRecord.created_at)
        if watch_filter.id:
            stmt = stmt.where(AccessRequestRecord.id == watch_filter.id)
        if watch_filter.user:
            stmt = stmt.where(AccessRequestRecord.user == watch_filter.user)
        if watch_filter.state is not None:
            stmt = stmt.where(AccessRequestRecord.state == watch_filter.state.value)

        with session_scope(self._sessions) as session:
            return [_request_from_record(record) for record in session.execute(stmt).scalars()]

    def set_access_request_state(
        self,
        ctx: Context,
        request_id: str,
        state: RequestState,
        delegator: str,
        *,
        reason: str = "",
    ) -> None:
        ctx.raise_if_done()
        with session_scope(self._sessions) as session:
            record = session.get(AccessRequestRecord, request_id)
            if record is None:
                raise NotFound(f"no request matching {request_id!r}")

            previous = RequestState(record.state)
            if state not in _ALLOWED_TRANSITIONS[previous]:
                raise BadParameter(f"cannot transition request from {previous.value} to {state.value}")

            result = session.execute(
                update(AccessRequestRecord)
                .where(AccessRequestRecord.id == request_id, AccessRequestRecord.version == record.version)
                .values(
                    state=state.value,
                    resolve_reason=reason,
                    delegator=delegator,
                    version=record.version + 1,
                )
            )
            if result.rowcount != 1:
                raise CompareFailed(f"request {request_id} was updated concurrently")
            session.refresh(record)
            request = _request_from_record(record)

        self._log.info("access_request_resolved", request_id=request_id, state=state.value, delegator=delegator)
        self._publish(RawEvent(op=EventType.PUT.value, resource=request), request)

    def delete_access_request(self, ctx: Context, request_id: str) -> None:
        """Remove a request, as expiry does, together with its plugin data."""

        ctx.raise_if_done()
        with session_scope(self._sessions) as session:
            result = session.execute(delete(AccessRequestRecord).where(AccessRequestRecord.id == request_id))
            if result.rowcount != 1:
                raise NotFound(f"no request matching {request_id!r}")
            session.execute(
                delete(PluginDataRecord).where(
                    PluginDataRecord.kind == KIND_ACCESS_REQUEST,
                    PluginDataRecord.resource == request_id,
                )
            )

        self._publish(
            RawEvent(op=EventType.DELETE.value, resource=ResourceHeader(kind=KIND_ACCESS_REQUEST, name=request_id)),
            None,
        )

    def get_plugin_data(self, ctx: Context, kind: str, resource: str, plugin: str) -> PluginDataMap:
        ctx.raise_if_done()
        with session_scope(self._sessions) as session:
            record = self._find_plugin_data(session, kind, resource, plugin)
            if record is None:
                raise NotFound("plugin data not found")
            return json.loads(record.data_json)

    def update_plugin_data(
        self,
        ctx: Context,
        kind: str,
        resource: str,
        plugin: str,
        set_values: Mapping[str, str],
        expect: Mapping[str, str] | None,
    ) -> None:
        """Merge *set_values* into the stored map if it matches *expect*.

        Keys missing from the stored map compare equal to the empty string;
        setting a key to the empty string removes it.
        """

        ctx.raise_if_done()
        try:
            self._update_plugin_data(kind, resource, plugin, set_values, expect)
        except IntegrityError as exc:
            raise CompareFailed("plugin data was created concurrently") from exc

    def _update_plugin_data(
        self,
        kind: str,
        resource: str,
        plugin: str,
        set_values: Mapping[str, str],
        expect: Mapping[str, str] | None,
    ) -> None:
        with session_scope(self._sessions) as session:
            if kind == KIND_ACCESS_REQUEST and session.get(AccessRequestRecord, resource) is None:
                raise NotFound(f"no request matching {resource!r}")

            record = self._find_plugin_data(session, kind, resource, plugin)
            stored = json.loads(record.data_json) if record is not None else {}
            for key, value in (expect or {}).items():
                if stored.get(key, "") != value:
                    raise CompareFailed(f"plugin data key {key!r} does not match the expected value")

            merged = dict(stored)
            for key, value in set_values.items():
                if value:
                    merged[key] = value
                else:
                    merged.pop(key, None)

            if record is None:
                session.add(PluginDataRecord(kind=kind, resource=resource, plugin=plugin, data_json=json.dumps(merged)))
                session.flush()
                return

            result = session.execute(
                update(PluginDataRecord)
                .where(PluginDataRecord.id == record.id, PluginDataRecord.version == record.version)
                .values(data_json=json.dumps(merged), version=record.version + 1)
            )
            if result.rowcount != 1:
                raise CompareFailed("plugin data was updated concurrently")

    @staticmethod
    def _find_plugin_data(session, kind: str, resource: str, plugin: str) -> PluginDataRecord | None:
        return session.execute(
            select(PluginDataRecord).where(
                PluginDataRecord.kind == kind,
                PluginDataRecord.resource == resource,
                PluginDataRecord.plugin == plugin,
            )
        ).scalar_one_or_none()

    def watch_events(self, ctx: Context, watch_filter: WatchFilter) -> LocalEventStream:
        ctx.raise_if_done()
        if watch_filter.kind != KIND_ACCESS_REQUEST:
            raise BadParameter(f"unsupported watch kind {watch_filter.kind!r}")
        stream = LocalEventStream(self, ctx, watch_filter)
        with self._lock:
            self._streams.append(stream)
        return stream

    def disconnect_watchers(self, error: BaseException | None = None) -> None:
        """Break every open watch stream, as a dropped connection would."""

        with self._lock:
            streams, self._streams = self._streams, []
        for stream in streams:
            stream.disconnect(error or ConnectionProblem("watch stream disconnected"))

    def _unsubscribe(self, stream: LocalEventStream) -> None:
        with self._lock:
            if stream in self._streams:
                self._streams.remove(stream)

    def _publish(self, event: RawEvent, request: Request | None) -> None:
        with self._lock:
            streams = list(self._streams)
        for stream in streams:
            if request is None or stream.filter.matches(request):
                stream.deliver(event)
