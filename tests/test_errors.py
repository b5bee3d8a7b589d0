"""Tests for the error taxonomy."""

from __future__ import annotations

import pytest

from access_plugins.errors import (
    AccessError,
    BadParameter,
    CacheClosed,
    Canceled,
    CompareFailed,
    ConnectionProblem,
    DeadlineExceeded,
    ErrorKind,
    NotFound,
    StreamClosed,
    is_canceled,
    is_retryable,
    kind_of,
)


@pytest.mark.parametrize(
    ("error", "kind"),
    [
        (ConnectionProblem(), ErrorKind.CONNECTION_PROBLEM),
        (StreamClosed(), ErrorKind.EOF),
        (Canceled(), ErrorKind.CANCELED),
        (DeadlineExceeded(), ErrorKind.DEADLINE_EXCEEDED),
        (CompareFailed(), ErrorKind.COMPARE_FAILED),
        (NotFound(), ErrorKind.NOT_FOUND),
        (BadParameter(), ErrorKind.BAD_PARAMETER),
        (CacheClosed(), ErrorKind.CANCELED),
        (RuntimeError("boom"), None),
    ],
)
def test_kind_of(error, kind):
    assert kind_of(error) is kind


def test_only_connection_problems_and_eof_are_retryable():
    assert is_retryable(ConnectionProblem("reset"))
    assert is_retryable(StreamClosed())
    assert not is_retryable(BadParameter("bad"))
    assert not is_retryable(DeadlineExceeded())
    assert not is_retryable(ValueError("unclassified"))
    assert not is_retryable(None)


def test_is_canceled():
    assert is_canceled(Canceled())
    assert is_canceled(CacheClosed("closed"))
    assert not is_canceled(DeadlineExceeded())


def test_default_message_and_cause():
    cause = OSError("socket closed")
    error = ConnectionProblem(cause=cause)

    assert error.message == "connection problem"
    assert error.__cause__ is cause
    assert isinstance(error, AccessError)
    assert str(NotFound("no request")) == "no request"
