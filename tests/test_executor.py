"""Tests for GenerationExecutor — bounded workers and back-pressure."""

import asyncio
import logging

import pytest

from chorus.executor import ExecutorSaturatedError, GenerationExecutor


@pytest.fixture
async def executor():
    ex = GenerationExecutor(workers=2, queue_size=2)
    ex.start()
    yield ex
    await ex.shutdown()


class TestExecution:
    async def test_runs_submitted_jobs(self, executor: GenerationExecutor) -> None:
        done = []

        async def job() -> None:
            done.append(True)

        executor.submit(job)
        executor.submit(job)
        await asyncio.wait_for(executor.join(), 1)
        assert done == [True, True]

    async def test_at_most_workers_jobs_run_at_once(self, executor: GenerationExecutor) -> None:
        release = asyncio.Event()
        peak = 0

        async def job() -> None:
            nonlocal peak
            peak = max(peak, executor.running)
            await release.wait()

        executor.submit(job)
        executor.submit(job)
        await asyncio.sleep(0.01)  # both picked up by workers
        executor.submit(job)
        executor.submit(job)
        await asyncio.sleep(0.01)
        assert executor.running == 2
        assert executor.pending == 2
        release.set()
        await asyncio.wait_for(executor.join(), 1)
        assert peak == 2

    async def test_failing_job_does_not_kill_worker(self, executor: GenerationExecutor, caplog) -> None:
        done = []

        async def bad() -> None:
            raise RuntimeError("boom")

        async def good() -> None:
            done.append(True)

        with caplog.at_level(logging.ERROR, logger="chorus.executor"):
            executor.submit(bad)
            executor.submit(bad)
            await asyncio.sleep(0.01)
            executor.submit(good)
            await asyncio.wait_for(executor.join(), 1)
        assert done == [True]
        assert "job failed" in caplog.text


class TestBackPressure:
    async def test_full_queue_rejects(self, executor: GenerationExecutor) -> None:
        release = asyncio.Event()

        async def job() -> None:
            await release.wait()

        executor.submit(job)
        executor.submit(job)
        await asyncio.sleep(0.01)  # both workers busy
        executor.submit(job)
        executor.submit(job)  # queue now full
        with pytest.raises(ExecutorSaturatedError):
            executor.submit(job)
        release.set()
        await asyncio.wait_for(executor.join(), 1)

    async def test_submit_before_start_fails(self) -> None:
        async def job() -> None:
            pass

        with pytest.raises(RuntimeError, match="not started"):
            GenerationExecutor().submit(job)


class TestLifecycle:
    async def test_shutdown_cancels_running_jobs(self) -> None:
        ex = GenerationExecutor(workers=1, queue_size=1)
        ex.start()
        cancelled = []

        async def job() -> None:
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(True)
                raise

        ex.submit(job)
        await asyncio.sleep(0.01)
        await ex.shutdown()
        assert cancelled == [True]
        assert not ex.started

    async def test_start_twice_keeps_workers(self) -> None:
        ex = GenerationExecutor(workers=3, queue_size=1)
        ex.start()
        ex.start()
        assert ex.started
        await ex.shutdown()

    async def test_restart_after_shutdown_runs_jobs(self) -> None:
        ex = GenerationExecutor(workers=1, queue_size=2)
        ex.start()
        await ex.shutdown()

        done = []

        async def job() -> None:
            done.append(True)

        ex.start()
        ex.submit(job)
        await asyncio.wait_for(ex.join(), 1)
        assert done == [True]
        await ex.shutdown()

    def test_rejects_bad_sizes(self) -> None:
        with pytest.raises(ValueError):
            GenerationExecutor(workers=0)
        with pytest.raises(ValueError):
            GenerationExecutor(queue_size=0)
