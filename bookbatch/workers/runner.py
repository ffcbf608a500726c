"""
Job runner: claims due jobs and executes them with bounded concurrency.

Workers return an outcome and the runner applies it to the job row:
``Done`` completes it, ``Continue`` makes the same job available again and
``Snooze`` reschedules it without spending an attempt. Exceptions are
recorded on the job and retried with backoff until ``max_attempts``.
"""
import asyncio
import logging
import time
from typing import Any, Callable, Dict, Iterable, Optional, Protocol

from bookbatch.config import (
    JOB_RESCUE_AFTER_SECONDS,
    JOB_RESCUE_INTERVAL_SECONDS,
    WORKER_CONCURRENCY,
)
from bookbatch.persistence.job_queue import Job, JobQueue
from bookbatch.workers.outcomes import Continue, Outcome, Snooze

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 300


class Worker(Protocol):
    name: str

    async def perform(self, args: Dict[str, Any]) -> Outcome:
        ...


def exponential_backoff(attempt: int) -> float:
    """Seconds to wait before retrying after the given attempt."""
    return float(min(2 ** max(attempt, 0), MAX_BACKOFF_SECONDS))


class JobRunner:
    """
    Runs queued jobs against a registry of workers.

    Args:
        queue: Durable job queue
        workers: Workers to register, looked up by their ``name``
        concurrency: Maximum number of jobs executing at once
        rescue_after: Executing jobs older than this are considered stuck
        rescue_interval: Seconds between stuck-job sweeps
        backoff: Retry delay for a failed attempt number
    """

    def __init__(self, queue: JobQueue, workers: Iterable[Worker],
                 concurrency: int = WORKER_CONCURRENCY,
                 rescue_after: float = JOB_RESCUE_AFTER_SECONDS,
                 rescue_interval: float = JOB_RESCUE_INTERVAL_SECONDS,
                 backoff: Callable[[int], float] = exponential_backoff):
        self.queue = queue
        self.workers: Dict[str, Worker] = {worker.name: worker for worker in workers}
        self.concurrency = max(1, concurrency)
        self.rescue_after = rescue_after
        self.rescue_interval = rescue_interval
        self.backoff = backoff
        self._semaphore = asyncio.Semaphore(self.concurrency)
        self._last_rescue: Optional[float] = None

    async def execute(self, job: Job) -> Optional[Outcome]:
        """Run one claimed job and record its outcome on the queue."""
        worker = self.workers.get(job.worker)
        if worker is None:
            self.queue.fail(job, f"No worker registered for '{job.worker}'", backoff=self.backoff(job.attempt))
            return None

        async with self._semaphore:
            try:
                outcome = await worker.perform(job.args)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Job {job.id} ({job.worker}) attempt {job.attempt} failed: {e}")
                retry = self.queue.fail(job, f"{type(e).__name__}: {e}", backoff=self.backoff(job.attempt))
                if not retry and hasattr(worker, "on_discard"):
                    worker.on_discard(job.args)
                return None

        if isinstance(outcome, Continue):
            self.queue.requeue(job.id)
        elif isinstance(outcome, Snooze):
            self.queue.snooze(job.id, outcome.seconds)
        else:
            self.queue.complete(job.id)
        return outcome

    def rescue_if_due(self, force: bool = False) -> int:
        now = time.monotonic()
        if not force and self._last_rescue is not None and now - self._last_rescue < self.rescue_interval:
            return 0
        self._last_rescue = now
        return self.queue.rescue_stuck(self.rescue_after)

    async def run_once(self) -> int:
        """
        Claim and execute one round of due jobs.

        Returns:
            Number of jobs executed
        """
        self.rescue_if_due()
        jobs = self.queue.claim(limit=self.concurrency)
        if jobs:
            await asyncio.gather(*(self.execute(job) for job in jobs))
        return len(jobs)

    async def run_until_idle(self, max_idle: Optional[float] = None,
                             poll_interval: float = 0.5) -> Dict[str, int]:
        """
        Execute jobs until none remain.

        Args:
            max_idle: Stop early when the next job is due further than this
                many seconds away (e.g. every remaining group is paused).
                None waits for every scheduled job.
            poll_interval: Upper bound on a single idle sleep

        Returns:
            Counts of executed rounds and jobs
        """
        self.rescue_if_due(force=True)
        stats = {"rounds": 0, "jobs": 0}

        while True:
            executed = await self.run_once()
            if executed:
                stats["rounds"] += 1
                stats["jobs"] += executed
                continue

            if not self.queue.has_pending():
                break

            next_at = self.queue.next_scheduled_at()
            wait = poll_interval if next_at is None else max(0.0, next_at - self.queue.clock())
            if max_idle is not None and wait > max_idle:
                logger.info(f"Next job is due in {wait:.0f}s, stopping")
                break
            await asyncio.sleep(min(wait, poll_interval))

        return stats

