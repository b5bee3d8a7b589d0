"""Error taxonomy shared by the watcher, the jobs and the plugin data client."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    CONNECTION_PROBLEM = "connection_problem"
    EOF = "eof"
    CANCELED = "canceled"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    COMPARE_FAILED = "compare_failed"
    NOT_FOUND = "not_found"
    BAD_PARAMETER = "bad_parameter"
    NOT_IMPLEMENTED = "not_implemented"


class AccessError(Exception):
    """Base class for every classified failure raised by this package."""

    kind: ErrorKind

    def __init__(self, message: str = "", *, cause: BaseException | None = None) -> None:
        super().__init__(message or self.kind.value.replace("_", " "))
        self.message = str(self.args[0])
        if cause is not None:
            self.__cause__ = cause


class ConnectionProblem(AccessError):
    """The authority could not be reached or the stream broke mid-read."""

    kind = ErrorKind.CONNECTION_PROBLEM


class StreamClosed(AccessError):
    """The event stream ended without an explicit error."""

    kind = ErrorKind.EOF


class Canceled(AccessError):
    """The caller cancelled the operation."""

    kind = ErrorKind.CANCELED


class DeadlineExceeded(AccessError):
    """An operation outlived its deadline."""

    kind = ErrorKind.DEADLINE_EXCEEDED


class CompareFailed(AccessError):
    """A compare-and-swap write found a different stored value."""

    kind = ErrorKind.COMPARE_FAILED


class NotFound(AccessError):
    kind = ErrorKind.NOT_FOUND


class BadParameter(AccessError):
    """Malformed input or a protocol violation. Never retried."""

    kind = ErrorKind.BAD_PARAMETER


class NotImplementedByServer(AccessError):
    """The authority lacks a required capability or is too old."""

    kind = ErrorKind.NOT_IMPLEMENTED


class CacheClosed(Canceled):
    """Raised by a request cache after its owner was shut down."""


_RETRYABLE = {ErrorKind.CONNECTION_PROBLEM, ErrorKind.EOF}


def kind_of(exc: BaseException | None) -> ErrorKind | None:
    """Return the error kind of *exc*, or None for unclassified exceptions."""

    if isinstance(exc, AccessError):
        return exc.kind
    return None


def is_retryable(exc: BaseException | None) -> bool:
    return kind_of(exc) in _RETRYABLE


def is_canceled(exc: BaseException | None) -> bool:
    return kind_of(exc) is ErrorKind.CANCELED
