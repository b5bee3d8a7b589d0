"""Supervisable jobs, including the watcher reconciliation loop."""

from __future__ import annotations

import threading
from concurrent import futures
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from .authority import AccessRequestAuthority
from .background import create_executor, run_async
from .backoff import Decorr
from .context import Context
from .errors import Canceled, ConnectionProblem, DeadlineExceeded, StreamClosed
from .models import DeleteEvent, Event, InitEvent, PutEvent, RequestState, WatchFilter
from .watcher import Watcher

DEFAULT_EVENT_FUNC_TIMEOUT = 5.0
DEFAULT_INIT_TIMEOUT = 5.0

EventFunc = Callable[[Context, Event], None]


class ServiceJob:
    """A long-running unit of work with readiness and completion signals.

    Subclasses override :meth:`do_job`, or pass *func* to wrap a plain
    function. Readiness flips to True at most once and is never reset.
    """

    def __init__(self, name: str, func: Callable[[Context], None] | None = None) -> None:
        self.name = name
        self._func = func
        self._cond = threading.Condition()
        self._ready = False
        self._result: Future = Future()

    def do_job(self, ctx: Context) -> None:
        if self._func is None:
            raise NotImplementedError
        self._func(ctx)

    def run(self, ctx: Context) -> None:
        """Execute the job on the calling thread until it terminates."""

        try:
            self.do_job(ctx)
        except Exception as exc:
            self._finish(exc)
            raise
        self._finish(None)

    def _finish(self, error: BaseException | None) -> None:
        if error is None:
            self._result.set_result(None)
        else:
            self._result.set_exception(error)
        with self._cond:
            self._cond.notify_all()

    def set_ready(self) -> None:
        with self._cond:
            if not self._ready:
                self._ready = True
                self._cond.notify_all()

    def is_ready(self) -> bool:
        with self._cond:
            return self._ready

    def wait_ready(self, ctx: Context) -> bool:
        """Block until the job is ready or finished.

        Return the readiness flag; a job that finished without ever becoming
        ready yields False. Raises the error of *ctx* if it ends first.
        """

        def wake(_ctx: Context) -> None:
            with self._cond:
                self._cond.notify_all()

        ctx.add_done_callback(wake)
        try:
            with self._cond:
                self._cond.wait_for(lambda: self._ready or self._result.done() or ctx.done())
                if self._ready:
                    return True
            if self._result.done():
                return False
            ctx.raise_if_done()
            return False
        finally:
            ctx.remove_done_callback(wake)

    def done(self) -> bool:
        return self._result.done()

    def wait(self, timeout: float | None = None) -> bool:
        try:
            self._result.exception(timeout)
        except futures.TimeoutError:
            return False
        return True

    def err(self) -> BaseException | None:
        """Return the terminal error, or None while running or after success."""

        if not self._result.done():
            return None
        return self._result.exception()


@dataclass(frozen=True)
class WatcherJobConfig:
    watch_filter: WatchFilter = field(default_factory=lambda: WatchFilter(state=RequestState.PENDING))
    init_timeout: float = DEFAULT_INIT_TIMEOUT
    event_func_timeout: float = DEFAULT_EVENT_FUNC_TIMEOUT
    reconnect_base_delay: float = 0.2
    reconnect_max_delay: float = 2.0


class _HandlerFailure(Exception):
    def __init__(self, error: BaseException) -> None:
        super().__init__(str(error))
        self.error = error


class WatcherJob(ServiceJob):
    """Watch access request events and feed them to *handler* one at a time.

    Connection problems and closed streams restart the watch after a
    backoff delay; cancellation of the job context ends the job quietly.
    Anything else, including a failing or slow handler, stops the job with
    that error.
    """

    def __init__(
        self,
        authority: AccessRequestAuthority,
        handler: EventFunc,
        config: WatcherJobConfig | None = None,
        *,
        logger: Any | None = None,
    ) -> None:
        super().__init__("watcher")
        self._authority = authority
        self._handler = handler
        self.config = config or WatcherJobConfig()
        self._log = logger or structlog.get_logger().bind(component="watcher_job")

    def do_job(self, ctx: Context) -> None:
        ctx = ctx.with_cancel()
        backoff = Decorr(self.config.reconnect_base_delay, self.config.reconnect_max_delay)
        executor = create_executor("watcher-event")
        fatal: BaseException | None = None
        try:
            while True:
                try:
                    self._watch_events(ctx, executor, backoff)
                    return
                except _HandlerFailure as failure:
                    fatal = failure.error
                    break
                except ConnectionProblem as exc:
                    self._log.error("watcher_reconnecting", reason="connection_problem", error=str(exc))
                except StreamClosed as exc:
                    self._log.error("watcher_reconnecting", reason="stream_closed", error=str(exc))
                except (Canceled, DeadlineExceeded) as exc:
                    if ctx.done():
                        self._log.debug("watcher_job_stopped")
                        return
                    self._log.error("watcher_job_failed", error=str(exc), error_type=type(exc).__name__)
                    raise
                except Exception as exc:
                    self._log.error("watcher_job_failed", error=str(exc), error_type=type(exc).__name__)
                    raise

                try:
                    backoff.do(ctx)
                except (Canceled, DeadlineExceeded):
                    return
        finally:
            ctx.cancel()
            executor.shutdown(wait=False, cancel_futures=True)

        raise fatal

    def _watch_events(self, ctx: Context, executor: futures.Executor, backoff: Decorr) -> None:
        watcher = Watcher(ctx, self._authority, self.config.watch_filter, logger=self._log)
        try:
            watcher.wait_init(ctx, self.config.init_timeout)
            self._log.debug("watcher_connected")
            backoff.reset()
            self.set_ready()

            for event in watcher.events:
                if isinstance(event, InitEvent):
                    continue
                self._dispatch(ctx, executor, event)
        finally:
            watcher.close()

        error = watcher.error()
        if error is not None:
            raise error
        ctx.raise_if_done()
        raise StreamClosed("watcher stopped unexpectedly")

    def _dispatch(self, ctx: Context, executor: futures.Executor, event: PutEvent | DeleteEvent) -> None:
        if isinstance(event, PutEvent):
            request_id = event.request.id
        else:
            request_id = event.request_id
        request_op = event.type.value.lower()

        event_ctx = ctx.with_timeout(self.config.event_func_timeout)
        wake = threading.Event()
        try:
            future = run_async(
                executor,
                self._handler,
                event_ctx,
                event,
                log_context={"request_id": request_id, "request_op": request_op},
            )
            future.add_done_callback(lambda _future: wake.set())
            event_ctx.add_done_callback(lambda _ctx: wake.set())
            wake.wait()

            if future.done():
                error = future.exception()
                if error is None:
                    return
                ctx.raise_if_done()
                self._log.error("event_handler_failed", request_id=request_id, request_op=request_op, error=str(error))
                raise _HandlerFailure(error)

            ctx.raise_if_done()
            self._log.error(
                "event_handler_timed_out",
                request_id=request_id,
                request_op=request_op,
                timeout=self.config.event_func_timeout,
            )
            raise _HandlerFailure(event_ctx.error or DeadlineExceeded("event handler timed out"))
        finally:
            event_ctx.cancel()
