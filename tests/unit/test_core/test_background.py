"""Tests for the background task runner module."""

import asyncio
import gc

import pytest

from schools_api.core.background import InProcessTaskRunner, TaskAlreadyRunningError, TaskStatus


class TestTaskStatus:
    def test_status_values(self) -> None:
        assert TaskStatus.PENDING == "pending"
        assert TaskStatus.RUNNING == "running"
        assert TaskStatus.COMPLETED == "completed"
        assert TaskStatus.FAILED == "failed"


class TestInProcessTaskRunner:
    """Tests for InProcessTaskRunner."""

    async def test_submit_task_returns_uuid_id(self) -> None:
        runner = InProcessTaskRunner()

        async def noop() -> None:
            pass

        task_id = runner.submit_task(noop())
        assert isinstance(task_id, str)
        assert len(task_id) == 36
        await asyncio.sleep(0.05)

    async def test_successful_task_completes(self) -> None:
        runner = InProcessTaskRunner()
        completed = False

        async def simple_task() -> None:
            nonlocal completed
            completed = True

        task_id = runner.submit_task(simple_task())
        assert runner.get_status(task_id) == TaskStatus.PENDING
        await asyncio.sleep(0.1)

        assert runner.get_status(task_id) == TaskStatus.COMPLETED
        assert runner.is_running(task_id) is False
        assert completed is True

    async def test_failed_task_marks_status(self) -> None:
        runner = InProcessTaskRunner()

        async def failing_task() -> None:
            msg = "Task failed"
            raise RuntimeError(msg)

        task_id = runner.submit_task(failing_task())
        await asyncio.sleep(0.1)

        assert runner.get_status(task_id) == TaskStatus.FAILED

    async def test_key_is_task_id(self) -> None:
        runner = InProcessTaskRunner()

        async def noop() -> None:
            pass

        assert runner.submit_task(noop(), key="job-1") == "job-1"
        await asyncio.sleep(0.05)

    async def test_live_key_rejects_second_task(self) -> None:
        runner = InProcessTaskRunner()
        release = asyncio.Event()

        async def blocking() -> None:
            await release.wait()

        async def second() -> None:
            pass

        runner.submit_task(blocking(), key="job-1")
        await asyncio.sleep(0)
        assert runner.get_status("job-1") == TaskStatus.RUNNING

        with pytest.raises(TaskAlreadyRunningError, match="job-1"):
            runner.submit_task(second(), key="job-1")

        release.set()
        await asyncio.sleep(0.05)
        assert runner.get_status("job-1") == TaskStatus.COMPLETED

    async def test_finished_key_can_be_reused(self) -> None:
        runner = InProcessTaskRunner()
        runs: list[int] = []

        async def record(n: int) -> None:
            runs.append(n)

        runner.submit_task(record(1), key="job-1")
        await asyncio.sleep(0.05)
        runner.submit_task(record(2), key="job-1")
        await asyncio.sleep(0.05)

        assert runs == [1, 2]

    def test_get_status_unknown_id_raises(self) -> None:
        runner = InProcessTaskRunner()
        with pytest.raises(KeyError):
            runner.get_status("nonexistent-id")


class TestRetention:
    """Tests for forgetting finished tasks."""

    async def test_finished_tasks_are_pruned_after_retention(self) -> None:
        runner = InProcessTaskRunner(retention_seconds=0)

        async def noop() -> None:
            pass

        first = runner.submit_task(noop())
        await asyncio.sleep(0.05)
        second = runner.submit_task(noop())

        with pytest.raises(KeyError):
            runner.get_status(first)
        assert runner.is_running(first) is False
        await asyncio.sleep(0.05)
        with pytest.raises(KeyError):
            runner.get_status(second)

    async def test_finished_tasks_kept_within_retention(self) -> None:
        runner = InProcessTaskRunner(retention_seconds=3600)

        async def noop() -> None:
            pass

        task_id = runner.submit_task(noop())
        await asyncio.sleep(0.05)
        runner.submit_task(noop())

        assert runner.get_status(task_id) == TaskStatus.COMPLETED

    async def test_failed_task_exception_is_not_left_unretrieved(self) -> None:
        runner = InProcessTaskRunner()
        loop = asyncio.get_running_loop()
        reported: list[dict] = []
        previous_handler = loop.get_exception_handler()
        loop.set_exception_handler(lambda _loop, context: reported.append(context))

        async def failing_task() -> None:
            msg = "Task failed"
            raise RuntimeError(msg)

        try:
            task_id = runner.submit_task(failing_task())
            await asyncio.sleep(0.05)
            gc.collect()
        finally:
            loop.set_exception_handler(previous_handler)

        assert runner.get_status(task_id) == TaskStatus.FAILED
        assert reported == []
