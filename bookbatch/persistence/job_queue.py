"""
Durable job queue on top of the pipeline database.

Jobs move through ``available -> executing -> completed`` and end up
``discarded`` once they run out of attempts or are cancelled. A unique key
keeps at most one available-or-executing job per key, which makes
scheduling idempotent. Outcomes only apply to jobs still executing, so a job
cancelled mid-step is never brought back.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .database import Database, dumps, row_to_dict
from bookbatch.config import JOB_MAX_ATTEMPTS

logger = logging.getLogger(__name__)

STATE_AVAILABLE = 'available'
STATE_EXECUTING = 'executing'
STATE_COMPLETED = 'completed'
STATE_DISCARDED = 'discarded'

IN_FLIGHT_STATES = (STATE_AVAILABLE, STATE_EXECUTING)


@dataclass
class Job:
    """One durable unit of work."""
    id: int
    worker: str
    args: Dict[str, Any]
    unique_key: Optional[str] = None
    state: str = STATE_AVAILABLE
    attempt: int = 0
    max_attempts: int = JOB_MAX_ATTEMPTS
    scheduled_at: float = 0.0
    attempted_at: Optional[float] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Job':
        return cls(
            id=row['id'],
            worker=row['worker'],
            args=row['args'],
            unique_key=row['unique_key'],
            state=row['state'],
            attempt=row['attempt'],
            max_attempts=row['max_attempts'],
            scheduled_at=row['scheduled_at'],
            attempted_at=row['attempted_at'],
            errors=row['errors'] or [],
        )


class JobQueue:
    """
    SQLite-backed scheduler with unique keys, snoozing and stuck-job rescue.

    Args:
        db: Database holding the ``jobs`` table
        clock: Wall-clock source in seconds (injectable for tests)
    """

    def __init__(self, db: Database, clock: Callable[[], float] = time.time):
        self.db = db
        self.clock = clock

    def enqueue(self, worker: str, args: Dict[str, Any], unique_key: Optional[str] = None,
                max_attempts: int = JOB_MAX_ATTEMPTS, delay: float = 0) -> Optional[int]:
        """
        Schedule a job.

        Returns:
            The new job id, or None when a job with the same unique key is
            already available or executing
        """
        with self.db.transaction() as conn:
            if unique_key is not None:
                existing = conn.execute(
                    "SELECT id FROM jobs WHERE unique_key = ? AND state IN (?, ?) LIMIT 1",
                    (unique_key, *IN_FLIGHT_STATES)
                ).fetchone()
                if existing is not None:
                    logger.debug(f"Job {unique_key} already in flight (job {existing['id']})")
                    return None

            cursor = conn.execute("""
                INSERT INTO jobs (worker, args, unique_key, state, max_attempts, scheduled_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (worker, dumps(args), unique_key, STATE_AVAILABLE, max_attempts, self.clock() + delay))
            return cursor.lastrowid

    def claim(self, limit: int = 1) -> List[Job]:
        """Move up to ``limit`` due jobs to executing and return them."""
        now = self.clock()
        with self.db.transaction() as conn:
            rows = conn.execute("""
                SELECT * FROM jobs
                WHERE state = ? AND scheduled_at <= ?
                ORDER BY scheduled_at, id
                LIMIT ?
            """, (STATE_AVAILABLE, now, limit)).fetchall()

            jobs = []
            for row in rows:
                conn.execute("""
                    UPDATE jobs SET state = ?, attempt = attempt + 1, attempted_at = ?
                    WHERE id = ?
                """, (STATE_EXECUTING, now, row['id']))
                job = Job.from_row(row_to_dict(row))
                job.state = STATE_EXECUTING
                job.attempt += 1
                job.attempted_at = now
                jobs.append(job)
        return jobs

    def complete(self, job_id: int):
        self.db.execute(
            "UPDATE jobs SET state = ?, completed_at = ? WHERE id = ? AND state = ?",
            (STATE_COMPLETED, self.clock(), job_id, STATE_EXECUTING)
        )

    def requeue(self, job_id: int):
        """Make the same job available again right away with a fresh attempt budget."""
        self.db.execute(
            "UPDATE jobs SET state = ?, attempt = 0, scheduled_at = ? WHERE id = ? AND state = ?",
            (STATE_AVAILABLE, self.clock(), job_id, STATE_EXECUTING)
        )

    def snooze(self, job_id: int, seconds: float):
        """Reschedule without consuming an attempt."""
        self.db.execute("""
            UPDATE jobs SET state = ?, attempt = MAX(attempt - 1, 0), scheduled_at = ?
            WHERE id = ? AND state = ?
        """, (STATE_AVAILABLE, self.clock() + seconds, job_id, STATE_EXECUTING))

    def fail(self, job: Job, error: str, backoff: float = 0) -> bool:
        """
        Record an error and either retry later or discard.

        Returns:
            True if the job will be retried, False if it was discarded. A job
            cancelled while executing is left alone and reports True.
        """
        errors = list(job.errors) + [{'attempt': job.attempt, 'at': self.clock(), 'error': error}]
        retry = job.attempt < job.max_attempts
        cursor = self.db.execute("""
            UPDATE jobs SET state = ?, errors = ?, scheduled_at = ?
            WHERE id = ? AND state = ?
        """, (STATE_AVAILABLE if retry else STATE_DISCARDED, dumps(errors),
              self.clock() + backoff, job.id, STATE_EXECUTING))
        if not cursor.rowcount:
            logger.debug(f"Job {job.id} was cancelled while executing; error dropped: {error}")
            return True
        if not retry:
            logger.error(f"Job {job.id} ({job.worker}) discarded after {job.attempt} attempts: {error}")
        return retry

    def cancel_by_key_prefix(self, prefix: str) -> int:
        """
        Discard every in-flight job whose unique key starts with ``prefix``.

        Returns:
            Number of cancelled jobs
        """
        cursor = self.db.execute("""
            UPDATE jobs SET state = ?
            WHERE state IN (?, ?) AND substr(unique_key, 1, ?) = ?
        """, (STATE_DISCARDED, *IN_FLIGHT_STATES, len(prefix), prefix))
        if cursor.rowcount:
            logger.info(f"Cancelled {cursor.rowcount} job(s) keyed {prefix}*")
        return cursor.rowcount

    def rescue_stuck(self, timeout: float) -> int:
        """
        Reset jobs executing for longer than ``timeout`` seconds to available.

        Returns:
            Number of rescued jobs
        """
        cursor = self.db.execute("""
            UPDATE jobs SET state = ?
            WHERE state = ? AND attempted_at IS NOT NULL AND attempted_at < ?
        """, (STATE_AVAILABLE, STATE_EXECUTING, self.clock() - timeout))
        if cursor.rowcount:
            logger.warning(f"Rescued {cursor.rowcount} stuck job(s)")
        return cursor.rowcount

    def get(self, job_id: int) -> Optional[Job]:
        row = self.db.fetchone("SELECT * FROM jobs WHERE id = ?", (job_id,))
        return Job.from_row(row) if row else None

    def list_jobs(self, state: Optional[str] = None) -> List[Job]:
        if state is None:
            rows = self.db.fetchall("SELECT * FROM jobs ORDER BY id")
        else:
            rows = self.db.fetchall("SELECT * FROM jobs WHERE state = ? ORDER BY id", (state,))
        return [Job.from_row(row) for row in rows]

    def next_scheduled_at(self) -> Optional[float]:
        """Earliest scheduled time among available jobs."""
        row = self.db.fetchone(
            "SELECT MIN(scheduled_at) AS next_at FROM jobs WHERE state = ?", (STATE_AVAILABLE,)
        )
        return row['next_at'] if row else None

    def has_pending(self) -> bool:
        row = self.db.fetchone(
            "SELECT COUNT(*) AS n FROM jobs WHERE state IN (?, ?)", IN_FLIGHT_STATES
        )
        return bool(row and row['n'])
