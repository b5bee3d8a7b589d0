"""Run several service jobs side by side under one cancellation scope."""

from __future__ import annotations

import threading
from typing import Any, List

import structlog

from .context import Context
from .job import ServiceJob


class Process:
    """Supervise service jobs running on their own threads.

    When a critical job fails, every other job is cancelled and the failure
    is re-raised by :meth:`wait`.
    """

    def __init__(self, ctx: Context | None = None, *, logger: Any | None = None) -> None:
        self._ctx = (ctx or Context.background()).with_cancel()
        self._log = logger or structlog.get_logger().bind(component="process")
        self._lock = threading.Lock()
        self._threads: List[threading.Thread] = []
        self._failure: BaseException | None = None

    @property
    def ctx(self) -> Context:
        return self._ctx

    def spawn(self, job: ServiceJob, *, critical: bool = True) -> ServiceJob:
        thread = threading.Thread(
            target=self._run_job,
            args=(job, critical),
            name=f"job-{job.name}",
            daemon=True,
        )
        with self._lock:
            self._threads.append(thread)
        thread.start()
        return job

    def _run_job(self, job: ServiceJob, critical: bool) -> None:
        try:
            job.run(self._ctx)
        except Exception as exc:
            self._log.error("job_failed", job=job.name, critical=critical, error=str(exc))
            if critical:
                with self._lock:
                    if self._failure is None:
                        self._failure = exc
                self.terminate()
            return
        self._log.debug("job_finished", job=job.name)

    def terminate(self) -> None:
        """Signal every job to stop."""

        self._ctx.cancel()

    def wait(self, timeout: float | None = None) -> None:
        """Wait for all jobs to finish and re-raise the first critical failure."""

        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout)
        with self._lock:
            failure = self._failure
        if failure is not None:
            raise failure

    def shutdown(self, timeout: float | None = None) -> None:
        self.terminate()
        self.wait(timeout)
