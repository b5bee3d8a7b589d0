"""Tests for cancellation contexts."""

from __future__ import annotations

import pytest

from access_plugins.context import Context
from access_plugins.errors import Canceled, DeadlineExceeded


def test_cancel_sets_error_and_runs_callbacks_once():
    ctx = Context.background()
    calls = []
    ctx.add_done_callback(calls.append)

    ctx.cancel()
    ctx.cancel()

    assert ctx.done()
    assert isinstance(ctx.error, Canceled)
    assert calls == [ctx]


def test_callback_added_after_done_runs_immediately():
    ctx = Context.background()
    ctx.cancel()
    calls = []

    ctx.add_done_callback(calls.append)

    assert calls == [ctx]


def test_removed_callback_is_not_called():
    ctx = Context.background()
    calls = []
    ctx.add_done_callback(calls.append)
    ctx.remove_done_callback(calls.append)
    ctx.remove_done_callback(calls.append)

    ctx.cancel()

    assert calls == []


def test_timeout_expires_with_deadline_exceeded():
    ctx = Context.background().with_timeout(0.01)

    assert ctx.wait(1.0)
    assert isinstance(ctx.error, DeadlineExceeded)
    assert ctx.remaining() == 0.0
    with pytest.raises(DeadlineExceeded):
        ctx.raise_if_done()


def test_parent_cancellation_propagates_to_children():
    parent = Context.background()
    child = parent.with_cancel()
    grandchild = child.with_timeout(60)

    parent.cancel()

    assert child.done()
    assert grandchild.done()
    assert isinstance(grandchild.error, Canceled)


def test_child_cancellation_does_not_affect_parent():
    parent = Context.background()
    child = parent.with_cancel()

    child.cancel()

    assert not parent.done()
    assert parent.error is None


def test_child_inherits_earlier_parent_deadline():
    parent = Context.background().with_timeout(0.05)
    child = parent.with_timeout(60)

    assert child.deadline == parent.deadline
    assert child.wait(1.0)
    assert isinstance(child.error, DeadlineExceeded)


def test_background_context_has_no_deadline():
    ctx = Context.background()

    assert ctx.remaining() is None
    assert ctx.wait(0.01) is False
    ctx.raise_if_done()
