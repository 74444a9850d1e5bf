"""
Admission control for pipeline runs.

At most `max_concurrent` runs are in flight; the rest wait in a FIFO queue
and start as slots free up. Nothing is ever rejected.
"""

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable

from .config import DEFAULT_MAX_CONCURRENT_JOBS

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[None]]
CrashHandler = Callable[[str, BaseException], Awaitable[None]]


class AdmissionScheduler:
    """
    Bounded, FIFO scheduler of detached background runs.

    Admission and release happen on the event loop thread without awaiting in
    between, so the in-flight counter needs no lock.
    """

    def __init__(
        self,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT_JOBS,
        on_crash: CrashHandler | None = None,
    ) -> None:
        """
        Args:
            max_concurrent: Admission limit N.
            on_crash: Called with the job id and exception when a run raises.
                This is the run's error boundary; it should record the failure.
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.on_crash = on_crash
        self.in_flight = 0
        self.peak_in_flight = 0
        self._queue: deque[tuple[str, Job]] = deque()
        self._tasks: set[asyncio.Task] = set()

    @property
    def queued(self) -> int:
        return len(self._queue)

    def submit(self, job_id: str, job: Job) -> None:
        """
        Enqueue a run and start it at once if a slot is free.

        Must be called from a running event loop. Returns immediately.
        """
        self._queue.append((job_id, job))
        logger.debug("Queued %s (%d in flight, %d queued)", job_id, self.in_flight, len(self._queue))
        self._admit()

    def _admit(self) -> None:
        while self._queue and self.in_flight < self.max_concurrent:
            job_id, job = self._queue.popleft()
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            task = asyncio.create_task(self._run(job_id, job), name=f"grade-{job_id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, job_id: str, job: Job) -> None:
        try:
            await job()
        except Exception as e:
            logger.exception("Run %s crashed", job_id)
            if self.on_crash is not None:
                try:
                    await self.on_crash(job_id, e)
                except Exception:
                    logger.exception("Could not record the crash of run %s", job_id)
        finally:
            self.in_flight -= 1
            self._admit()

    async def wait_idle(self) -> None:
        """Wait until every queued and running job has finished."""
        while self._tasks or self._queue:
            await asyncio.gather(*list(self._tasks))
