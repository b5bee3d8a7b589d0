"""Tests for the SQL-backed local authority."""

from __future__ import annotations

import threading

import pytest

from access_plugins.authority import get_access_request
from access_plugins.errors import BadParameter, ConnectionProblem, NotFound, NotImplementedByServer
from access_plugins.job import WatcherJob, WatcherJobConfig
from access_plugins.models import EventType, Pong, RequestState, ResourceHeader, WatchFilter

from conftest import eventually


def test_ping_reports_cluster_and_version(authority, ctx):
    pong = authority.ping(ctx)

    assert pong.cluster_name == "test-cluster"
    pong.assert_server_version("6.1.0")
    with pytest.raises(NotImplementedByServer):
        pong.assert_server_version("7.0")


@pytest.mark.parametrize(
    ("server", "minimum", "ok"),
    [
        ("6.1.0", "6.1", True),
        ("v6.2.0-beta.1", "6.1.0", True),
        ("6.0.9", "6.1.0", False),
        ("10.0.0", "9.9.9", True),
    ],
)
def test_server_version_gate(server, minimum, ok):
    pong = Pong(server_version=server, cluster_name="c")

    if ok:
        pong.assert_server_version(minimum)
    else:
        with pytest.raises(NotImplementedByServer):
            pong.assert_server_version(minimum)


def test_invalid_version_is_bad_parameter():
    with pytest.raises(BadParameter):
        Pong(server_version="latest", cluster_name="c").assert_server_version("6.1.0")


def test_create_and_fetch_request(authority, ctx):
    created = authority.create_access_request(
        ctx, "alice", ["admin", "dba"], reason="incident", suggested_reviewers=["bob"]
    )

    fetched = get_access_request(authority, ctx, created.id)

    assert fetched.user == "alice"
    assert fetched.roles == ["admin", "dba"]
    assert fetched.state is RequestState.PENDING
    assert fetched.request_reason == "incident"
    assert fetched.suggested_reviewers == ["bob"]


@pytest.mark.parametrize(("user", "roles"), [("", ["admin"]), ("alice", [])])
def test_create_requires_user_and_roles(authority, ctx, user, roles):
    with pytest.raises(BadParameter):
        authority.create_access_request(ctx, user, roles)


def test_get_access_requests_filters_by_state_and_user(authority, ctx):
    first = authority.create_access_request(ctx, "alice", ["admin"])
    authority.create_access_request(ctx, "bob", ["admin"])
    authority.set_access_request_state(ctx, first.id, RequestState.APPROVED, "slack:reviewer")

    pending = authority.get_access_requests(ctx, WatchFilter(state=RequestState.PENDING))
    alice = authority.get_access_requests(ctx, WatchFilter(user="alice"))

    assert [request.user for request in pending] == ["bob"]
    assert [request.state for request in alice] == [RequestState.APPROVED]


def test_resolved_request_cannot_change_state_again(authority, ctx):
    request = authority.create_access_request(ctx, "alice", ["admin"])
    authority.set_access_request_state(ctx, request.id, RequestState.DENIED, "slack:reviewer")

    with pytest.raises(BadParameter):
        authority.set_access_request_state(ctx, request.id, RequestState.APPROVED, "slack:reviewer")


def test_set_state_of_unknown_request_is_not_found(authority, ctx):
    with pytest.raises(NotFound):
        authority.set_access_request_state(ctx, "missing", RequestState.APPROVED, "slack:reviewer")


def test_get_unknown_request_is_not_found(authority, ctx):
    with pytest.raises(NotFound):
        get_access_request(authority, ctx, "missing")


def test_watch_stream_starts_with_init_and_follows_filter(authority, ctx):
    stream = authority.watch_events(ctx, WatchFilter(state=RequestState.PENDING))
    events = iter(stream)

    assert next(events).op == EventType.INIT.value

    request = authority.create_access_request(ctx, "alice", ["admin"])
    authority.set_access_request_state(ctx, request.id, RequestState.APPROVED, "slack:reviewer")
    other = authority.create_access_request(ctx, "bob", ["admin"])
    authority.delete_access_request(ctx, other.id)

    put = next(events)
    assert put.op == EventType.PUT.value
    assert put.resource.id == request.id
    # The approval does not match the pending filter and is skipped.
    assert next(events).resource.id == other.id
    deleted = next(events)
    assert deleted.op == EventType.DELETE.value
    assert deleted.resource == ResourceHeader(kind="access_request", name=other.id)

    stream.close()


def test_delete_removes_request_and_plugin_data(authority, ctx):
    request = authority.create_access_request(ctx, "alice", ["admin"])
    authority.update_plugin_data(ctx, "access_request", request.id, "slack", {"messages": "C1/1"}, None)

    authority.delete_access_request(ctx, request.id)

    with pytest.raises(NotFound):
        authority.get_plugin_data(ctx, "access_request", request.id, "slack")
    with pytest.raises(NotFound):
        authority.delete_access_request(ctx, request.id)


def test_unsupported_watch_kind_is_bad_parameter(authority, ctx):
    with pytest.raises(BadParameter):
        authority.watch_events(ctx, WatchFilter(kind="role"))


def test_disconnect_breaks_open_streams(authority, ctx):
    stream = authority.watch_events(ctx, WatchFilter())
    events = iter(stream)
    next(events)

    authority.disconnect_watchers()

    with pytest.raises(ConnectionProblem):
        next(events)


def test_cancelling_watch_context_ends_stream(authority, ctx):
    watch_ctx = ctx.with_cancel()
    stream = authority.watch_events(watch_ctx, WatchFilter())
    events = iter(stream)
    next(events)

    watch_ctx.cancel()

    assert list(events) == []


def test_watcher_job_recovers_from_dropped_stream(authority, ctx):
    seen = []
    config = WatcherJobConfig(reconnect_base_delay=0.01, reconnect_max_delay=0.02)
    job = WatcherJob(authority, lambda _ctx, event: seen.append(event.request.user), config)

    threading.Thread(target=job.run, args=(ctx,), daemon=True).start()
    assert job.wait_ready(ctx) is True

    authority.create_access_request(ctx, "alice", ["admin"])
    assert eventually(lambda: seen == ["alice"])

    authority.disconnect_watchers()

    def created_after_reconnect_is_seen() -> bool:
        authority.create_access_request(ctx, "bob", ["admin"])
        return "bob" in seen

    assert eventually(created_after_reconnect_is_seen, timeout=3.0, interval=0.05)
    assert not job.done()
