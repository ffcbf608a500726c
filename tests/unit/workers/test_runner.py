"""Unit tests for the job runner."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from bookbatch.persistence.job_queue import STATE_AVAILABLE, STATE_COMPLETED, STATE_DISCARDED, JobQueue
from bookbatch.workers.outcomes import Continue, Done, Snooze
from bookbatch.workers.runner import JobRunner, exponential_backoff


class RecordingWorker:
    """Returns scripted outcomes (or raises scripted exceptions) in order."""

    def __init__(self, name, *outcomes):
        self.name = name
        self.outcomes = list(outcomes)
        self.calls = []
        self.discarded = []

    async def perform(self, args):
        self.calls.append(args)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def on_discard(self, args):
        self.discarded.append(args)


def no_backoff(attempt):
    return 0


class TestExecute:
    """Test outcome handling."""

    @pytest.mark.asyncio
    async def test_done_completes(self, queue):
        worker = RecordingWorker("w", Done({"ok": True}))
        job_id = queue.enqueue("w", {"n": 1})
        runner = JobRunner(queue, [worker])

        outcome = await runner.execute(queue.claim()[0])

        assert outcome == Done({"ok": True})
        assert worker.calls == [{"n": 1}]
        assert queue.get(job_id).state == STATE_COMPLETED

    @pytest.mark.asyncio
    async def test_continue_requeues_same_job(self, queue):
        job_id = queue.enqueue("w", {})
        runner = JobRunner(queue, [RecordingWorker("w", Continue("more"))])

        await runner.execute(queue.claim()[0])

        job = queue.get(job_id)
        assert (job.state, job.attempt) == (STATE_AVAILABLE, 0)
        assert len(queue.list_jobs()) == 1

    @pytest.mark.asyncio
    async def test_snooze_reschedules(self, queue):
        job_id = queue.enqueue("w", {})
        runner = JobRunner(queue, [RecordingWorker("w", Snooze(30))])

        await runner.execute(queue.claim()[0])

        job = queue.get(job_id)
        assert job.state == STATE_AVAILABLE
        assert job.attempt == 0
        assert job.scheduled_at > queue.clock() + 20

    @pytest.mark.asyncio
    async def test_exception_is_recorded_and_retried(self, queue):
        job_id = queue.enqueue("w", {}, max_attempts=3)
        runner = JobRunner(queue, [RecordingWorker("w", RuntimeError("boom"))], backoff=no_backoff)

        assert await runner.execute(queue.claim()[0]) is None

        job = queue.get(job_id)
        assert job.state == STATE_AVAILABLE
        assert "RuntimeError: boom" in job.errors[0]["error"]

    @pytest.mark.asyncio
    async def test_exhausted_job_is_discarded(self, queue):
        worker = RecordingWorker("w", RuntimeError("boom"))
        job_id = queue.enqueue("w", {"group_id": 4}, max_attempts=1)
        runner = JobRunner(queue, [worker], backoff=no_backoff)

        await runner.execute(queue.claim()[0])

        assert queue.get(job_id).state == STATE_DISCARDED
        assert worker.discarded == [{"group_id": 4}]

    @pytest.mark.asyncio
    async def test_unknown_worker_fails_job(self, queue):
        job_id = queue.enqueue("missing", {}, max_attempts=1)
        runner = JobRunner(queue, [])

        await runner.execute(queue.claim()[0])

        assert queue.get(job_id).state == STATE_DISCARDED


class TestRunUntilIdle:
    """Test the execution loop."""

    @pytest.mark.asyncio
    async def test_continue_loops_until_done(self, queue):
        worker = RecordingWorker("w", Continue(), Continue(), Done())
        queue.enqueue("w", {})
        runner = JobRunner(queue, [worker])

        stats = await runner.run_until_idle()

        assert stats == {"rounds": 3, "jobs": 3}
        assert len(worker.calls) == 3
        assert not queue.has_pending()

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, queue):
        worker = RecordingWorker("w", RuntimeError("flaky"), Done())
        queue.enqueue("w", {})
        runner = JobRunner(queue, [worker], backoff=no_backoff)

        stats = await runner.run_until_idle()

        assert stats["jobs"] == 2
        assert queue.list_jobs()[0].state == STATE_COMPLETED

    @pytest.mark.asyncio
    async def test_stops_when_next_job_is_far(self, queue):
        worker = RecordingWorker("w", Snooze(60))
        queue.enqueue("w", {})
        runner = JobRunner(queue, [worker])

        stats = await runner.run_until_idle(max_idle=0)

        assert stats["jobs"] == 1
        assert queue.has_pending()

    @pytest.mark.asyncio
    async def test_concurrency_bounds_each_round(self, queue):
        worker = RecordingWorker("w", Done())
        for n in range(5):
            queue.enqueue("w", {"n": n})
        runner = JobRunner(queue, [worker], concurrency=2)

        assert await runner.run_once() == 2
        stats = await runner.run_until_idle()

        assert stats == {"rounds": 2, "jobs": 3}
        assert sorted(call["n"] for call in worker.calls) == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_stuck_jobs_are_rescued(self, checkpoint):
        now = [1000.0]
        queue = JobQueue(checkpoint.db, clock=lambda: now[0])
        job_id = queue.enqueue("w", {})
        queue.claim()
        now[0] += 700

        runner = JobRunner(queue, [RecordingWorker("w", Done())], rescue_after=600)
        await runner.run_until_idle()

        assert queue.get(job_id).state == STATE_COMPLETED


def test_exponential_backoff():
    assert [exponential_backoff(n) for n in (0, 1, 3)] == [1.0, 2.0, 8.0]
    assert exponential_backoff(20) == 300.0


class TestMockedWorker:
    """Test the runner against mocked workers."""

    @staticmethod
    def mock_worker(**perform_kwargs):
        worker = MagicMock(spec=["name", "perform"])
        worker.name = "w"
        worker.perform = AsyncMock(**perform_kwargs)
        return worker

    @pytest.mark.asyncio
    async def test_worker_receives_job_args(self, queue):
        worker = self.mock_worker(return_value=Done())
        queue.enqueue("w", {"group_id": 3})

        executed = await JobRunner(queue, [worker]).run_once()

        assert executed == 1
        worker.perform.assert_awaited_once_with({"group_id": 3})

    @pytest.mark.asyncio
    async def test_discard_without_hook(self, queue):
        """Workers without on_discard are simply discarded."""
        worker = self.mock_worker(side_effect=RuntimeError("boom"))
        job_id = queue.enqueue("w", {}, max_attempts=1)

        await JobRunner(queue, [worker], backoff=no_backoff).run_once()

        assert queue.get(job_id).state == STATE_DISCARDED
