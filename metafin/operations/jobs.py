"""Tracked background execution for bulk-operation jobs."""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Awaitable, Callable

from ..common.validation import require_positive

LOGGER = logging.getLogger("metafin.operations.jobs")

DEFAULT_MAX_CONCURRENT_JOBS = 2

CancelHook = Callable[[], Awaitable[object]]


class JobRunner:
    """Run job coroutines as tracked tasks with a cap on concurrency.

    Every submitted job is registered until it finishes, failures are logged
    from a done-callback, and callers can await a single job or all of them.
    A job cancelled before it got a slot never runs its own cleanup, so
    :meth:`shutdown` awaits the ``on_cancel`` hook given to :meth:`submit`
    for those jobs instead.
    """

    def __init__(
        self,
        *,
        max_concurrent_jobs: int = DEFAULT_MAX_CONCURRENT_JOBS,
        logger: logging.Logger | None = None,
    ) -> None:
        self._max_concurrent_jobs = require_positive(
            max_concurrent_jobs, name="max_concurrent_jobs"
        )
        self._semaphore = asyncio.Semaphore(self._max_concurrent_jobs)
        self._tasks: dict[str, asyncio.Task[object]] = {}
        self._queued_hooks: dict[str, CancelHook] = {}
        self._logger = logger or LOGGER

    @property
    def max_concurrent_jobs(self) -> int:
        return self._max_concurrent_jobs

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    @property
    def active_jobs(self) -> list[str]:
        return list(self._tasks)

    @property
    def queued_jobs(self) -> list[str]:
        """Jobs submitted with a cancel hook that have not started yet."""

        return list(self._queued_hooks)

    def submit(
        self,
        job_id: str,
        job: Callable[[], Awaitable[object]],
        *,
        on_cancel: CancelHook | None = None,
    ) -> asyncio.Task[object]:
        """Schedule *job* on the running loop and return its task."""

        if job_id in self._tasks:
            raise ValueError(f"Job {job_id} is already running")
        task = asyncio.get_running_loop().create_task(
            self._run(job_id, job), name=f"metafin-job-{job_id}"
        )
        self._tasks[job_id] = task
        if on_cancel is not None:
            self._queued_hooks[job_id] = on_cancel
        task.add_done_callback(partial(self._on_done, job_id))
        return task

    async def _run(self, job_id: str, job: Callable[[], Awaitable[object]]) -> object:
        async with self._semaphore:
            self._queued_hooks.pop(job_id, None)
            self._logger.info("Starting job %s.", job_id)
            return await job()

    def _on_done(self, job_id: str, task: asyncio.Task[object]) -> None:
        self._tasks.pop(job_id, None)
        if task.cancelled():
            self._logger.warning("Job %s was cancelled.", job_id)
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error("Job %s failed: %s", job_id, exc, exc_info=exc)
        else:
            self._logger.info("Job %s finished.", job_id)

    async def wait(self, job_id: str) -> None:
        """Wait for *job_id* to finish; returns at once for unknown jobs."""

        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait({task})

    async def drain(self) -> None:
        """Wait until every submitted job has finished."""

        while self._tasks:
            await asyncio.wait(set(self._tasks.values()))

    async def shutdown(self) -> None:
        """Cancel outstanding jobs and wait for them to unwind."""

        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        hooks, self._queued_hooks = self._queued_hooks, {}
        for job_id, hook in hooks.items():
            try:
                await hook()
            except Exception as exc:
                self._logger.warning(
                    "Cancel hook for queued job %s failed: %s", job_id, exc, exc_info=exc
                )


__all__ = ["DEFAULT_MAX_CONCURRENT_JOBS", "JobRunner"]
