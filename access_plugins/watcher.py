"""Event watcher: one streaming subscription turned into typed events."""

from __future__ import annotations

import threading
from concurrent import futures
from concurrent.futures import Future
from typing import Any

import structlog

from .authority import AccessRequestAuthority
from .channel import Channel
from .context import Context
from .errors import BadParameter, Canceled, ConnectionProblem, DeadlineExceeded, StreamClosed
from .models import (
    DeleteEvent,
    Event,
    EventType,
    InitEvent,
    PutEvent,
    RawEvent,
    Request,
    ResourceHeader,
    WatchFilter,
)


_BENIGN_ON_CLOSE = (Canceled, DeadlineExceeded, ConnectionProblem, StreamClosed)


def translate_event(raw: RawEvent) -> Event:
    """Validate a raw stream event and convert it into its typed variant."""

    if raw.op == EventType.INIT:
        return InitEvent()
    if raw.op == EventType.PUT:
        if not isinstance(raw.resource, Request):
            raise BadParameter(f"unexpected resource type {type(raw.resource).__name__} for PUT")
        return PutEvent(request=raw.resource)
    if raw.op == EventType.DELETE:
        if not isinstance(raw.resource, ResourceHeader) or not raw.resource.name:
            raise BadParameter(f"expected resource header for DELETE, got {type(raw.resource).__name__}")
        return DeleteEvent(request_id=raw.resource.name)
    raise BadParameter(f"unexpected event op type {raw.op!r}")


class Watcher:
    """A single attempt at streaming access request events.

    The watcher never reconnects: it runs one receive loop on a daemon thread
    and terminates on the first stream error. Events are handed over through
    an unbuffered :class:`Channel`, so a slow consumer stalls the receive
    loop. The first item on the channel is always :class:`InitEvent`.

    Terminal state lives in a one-shot future settled by the receive loop
    before the event channel closes: once iteration over :meth:`events` ends,
    :meth:`error` is final.
    """

    def __init__(
        self,
        ctx: Context,
        authority: AccessRequestAuthority,
        watch_filter: WatchFilter,
        *,
        logger: Any | None = None,
    ) -> None:
        self._ctx = ctx.with_cancel()
        self._authority = authority
        self._filter = watch_filter
        self._log = logger or structlog.get_logger().bind(component="watcher")
        self._events: Channel[Event] = Channel()
        self._initialized: Future = Future()
        self._result: Future = Future()
        self._thread = threading.Thread(target=self._run, name="access-watcher", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        error: Exception | None = None
        try:
            self._receive()
        except Exception as exc:  # stored as the watcher's terminal error
            error = exc

        if error is not None and self._ctx.done() and isinstance(error, _BENIGN_ON_CLOSE):
            error = None

        if error is None:
            self._result.set_result(None)
        else:
            self._log.debug("watcher_failed", error=str(error), error_type=type(error).__name__)
            self._result.set_exception(error)
        self._events.close()
        self._ctx.cancel()

    def _receive(self) -> None:
        stream = self._authority.watch_events(self._ctx, self._filter)
        try:
            for raw in stream:
                event = translate_event(raw)
                if isinstance(event, InitEvent):
                    if self._initialized.done():
                        raise BadParameter("duplicate INIT event on a single stream")
                    self._initialized.set_result(None)
                elif not self._initialized.done():
                    raise BadParameter(f"received {event.type.value} event before INIT")

                if not self._events.send(event, self._ctx):
                    return
        finally:
            stream.close()

        if not self._ctx.done():
            raise StreamClosed("watcher stream closed")

    def wait_init(self, ctx: Context, timeout: float) -> None:
        """Block until the stream reported INIT.

        Raises :class:`ConnectionProblem` on timeout, the watcher's terminal
        error if it stopped first, or the error of *ctx* if that ended first.
        Returns immediately when INIT already arrived.
        """

        wake = threading.Event()

        def on_done(_source: object) -> None:
            wake.set()

        self._initialized.add_done_callback(on_done)
        self._result.add_done_callback(on_done)
        ctx.add_done_callback(on_done)
        try:
            wake.wait(timeout)
        finally:
            ctx.remove_done_callback(on_done)

        if self._initialized.done():
            return
        if self._result.done():
            error = self._result.exception()
            raise error if error is not None else Canceled("watcher closed before initialization")
        ctx.raise_if_done()
        raise ConnectionProblem("watcher initialization timed out")

    @property
    def events(self) -> Channel[Event]:
        return self._events

    def done(self) -> bool:
        return self._result.done()

    def wait(self, timeout: float | None = None) -> bool:
        """Wait for the watcher to terminate. Return done()."""

        try:
            self._result.exception(timeout)
        except futures.TimeoutError:
            return False
        return True

    def error(self) -> BaseException | None:
        """Return the terminal error, or None while running or after a clean close."""

        if not self._result.done():
            return None
        return self._result.exception()

    def close(self) -> None:
        self._ctx.cancel()
