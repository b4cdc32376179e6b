"""Background task runner abstraction.

Drives import jobs server-side when the client does not run the batch loop
itself.  Tasks may be registered under a key (the import job id); a key can
only have one live task at a time, which keeps batch calls for a job
strictly sequential.
"""

import asyncio
import enum
import time
import uuid
from collections.abc import Coroutine
from typing import Any, Protocol

from loguru import logger


class TaskStatus(enum.StrEnum):
    """Status of a background task."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


_LIVE_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.RUNNING})


class TaskAlreadyRunningError(Exception):
    """Raised when a task is submitted for a key that already has a live task."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"A background task is already running for {key}")


class BackgroundTaskRunner(Protocol):
    """Protocol for background task execution."""

    def submit_task(self, coro: Coroutine[Any, Any, Any], *, key: str | None = None) -> str:
        """Submit an async task for background execution.

        Args:
            coro: The coroutine to execute.
            key: Optional exclusivity key.

        Returns:
            The task ID (the key when one is given).
        """
        ...

    def get_status(self, task_id: str) -> TaskStatus:
        """Get the current status of a background task."""
        ...


class InProcessTaskRunner:
    """In-process background task runner using asyncio.

    Tasks run in the same process as the API server using
    ``asyncio.create_task()``.  A restart loses in-flight drivers, but not
    progress: every batch commits its own checkpoint.
    """

    def __init__(self, retention_seconds: float = 3600.0) -> None:
        self._statuses: dict[str, TaskStatus] = {}
        self._finished_at: dict[str, float] = {}
        self._tasks: dict[str, asyncio.Task[Any]] = {}
        self._retention_seconds = retention_seconds

    def is_running(self, task_id: str) -> bool:
        """Return True when the task is pending or running."""
        return self._statuses.get(task_id) in _LIVE_STATUSES

    def submit_task(self, coro: Coroutine[Any, Any, Any], *, key: str | None = None) -> str:
        """Submit an async task for background execution.

        Args:
            coro: The coroutine to execute.
            key: Optional exclusivity key used as the task ID.

        Returns:
            The task ID.

        Raises:
            TaskAlreadyRunningError: If ``key`` already has a live task.
        """
        self._prune_finished()
        task_id = key or str(uuid.uuid4())
        if self.is_running(task_id):
            coro.close()
            raise TaskAlreadyRunningError(task_id)
        self._statuses[task_id] = TaskStatus.PENDING
        self._finished_at.pop(task_id, None)

        async def _run() -> None:
            self._statuses[task_id] = TaskStatus.RUNNING
            try:
                await coro
                self._statuses[task_id] = TaskStatus.COMPLETED
            except Exception:
                self._statuses[task_id] = TaskStatus.FAILED
                logger.exception(f"Background task {task_id} failed")
            finally:
                self._finished_at[task_id] = time.monotonic()
                self._tasks.pop(task_id, None)

        self._tasks[task_id] = asyncio.create_task(_run())
        return task_id

    def get_status(self, task_id: str) -> TaskStatus:
        """Get the current status of a background task.

        Finished tasks are forgotten once ``retention_seconds`` have passed.

        Raises:
            KeyError: If the task ID is not found.
        """
        self._prune_finished()
        return self._statuses[task_id]

    def _prune_finished(self) -> None:
        cutoff = time.monotonic() - self._retention_seconds
        for task_id, finished_at in list(self._finished_at.items()):
            if finished_at <= cutoff:
                del self._finished_at[task_id]
                self._statuses.pop(task_id, None)


# Singleton instance for the application
task_runner = InProcessTaskRunner()
