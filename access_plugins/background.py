"""Utilities for running work on background threads."""

from contextvars import copy_context
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Any, Callable

from structlog.contextvars import bind_contextvars, get_contextvars


def create_executor(name: str, max_workers: int = 1) -> ThreadPoolExecutor:
    """Return a dedicated pool whose threads are named after *name*."""

    return ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)


def run_async(
    executor: Executor,
    func: Callable[..., Any],
    /,
    *args: Any,
    log_context: dict[str, Any] | None = None,
    **kwargs: Any,
) -> Future:
    """Submit *func* to *executor* and return a Future.

    The caller's structlog context vars are copied into the worker, extended
    with *log_context* when given.
    """

    context = copy_context()

    if log_context:
        existing = context.run(get_contextvars)
        missing = {key: value for key, value in log_context.items() if existing.get(key) != value}
        if missing:
            context.run(lambda: bind_contextvars(**missing))

    def runner() -> Any:
        return context.run(func, *args, **kwargs)

    return executor.submit(runner)
