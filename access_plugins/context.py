"""Cancellation tokens passed to every blocking operation."""

from __future__ import annotations

import threading
import time
from typing import Callable, List

from .errors import AccessError, Canceled, DeadlineExceeded

DoneCallback = Callable[["Context"], None]


class Context:
    """A cancellable scope with an optional deadline.

    A context ends exactly once, either through :meth:`cancel`, through its
    deadline passing, or because its parent ended. Once ended, :attr:`error`
    holds a :class:`Canceled` or :class:`DeadlineExceeded` instance and every
    registered done callback has been invoked.
    """

    def __init__(self, parent: "Context | None" = None, *, timeout: float | None = None) -> None:
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._error: AccessError | None = None
        self._callbacks: List[DoneCallback] = []
        self._timer: threading.Timer | None = None
        self._parent = parent
        self.deadline: float | None = parent.deadline if parent is not None else None

        if timeout is not None:
            deadline = time.monotonic() + max(timeout, 0.0)
            if self.deadline is None or deadline < self.deadline:
                self.deadline = deadline
                self._timer = threading.Timer(max(timeout, 0.0), self._expire)
                self._timer.daemon = True
                self._timer.start()

        if parent is not None:
            parent.add_done_callback(self._on_parent_done)

    @classmethod
    def background(cls) -> "Context":
        """Return a root context that only ends when cancelled explicitly."""

        return cls()

    def with_cancel(self) -> "Context":
        return Context(self)

    def with_timeout(self, seconds: float) -> "Context":
        return Context(self, timeout=seconds)

    @property
    def error(self) -> AccessError | None:
        with self._lock:
            return self._error

    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the context ends or *timeout* elapses. Return done()."""

        return self._done.wait(timeout)

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(self.deadline - time.monotonic(), 0.0)

    def raise_if_done(self) -> None:
        error = self.error
        if error is not None:
            raise error

    def cancel(self) -> None:
        self._finish(Canceled("context canceled"))

    def add_done_callback(self, callback: DoneCallback) -> None:
        with self._lock:
            if not self._done.is_set():
                self._callbacks.append(callback)
                return
        callback(self)

    def remove_done_callback(self, callback: DoneCallback) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

    def _expire(self) -> None:
        self._finish(DeadlineExceeded("context deadline exceeded"))

    def _on_parent_done(self, parent: "Context") -> None:
        self._finish(parent.error or Canceled("context canceled"))

    def _finish(self, error: AccessError) -> None:
        with self._lock:
            if self._done.is_set():
                return
            self._error = error
            self._done.set()
            callbacks, self._callbacks = self._callbacks, []

        if self._timer is not None:
            self._timer.cancel()
        if self._parent is not None:
            self._parent.remove_done_callback(self._on_parent_done)
        for callback in callbacks:
            callback(self)
