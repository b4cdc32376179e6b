"""Import job controller: checkpointed, resumable batch execution.

Every ``process_next_batch`` call is an independent unit of work: it loads
the job checkpoint, reads the next ``batch_size`` rows after the cursor,
enriches and commits them, and writes the advanced checkpoint in the same
transaction as the inserted rows.  A caller may stop between calls at any
time; the next call resumes from the last committed cursor.
"""

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from loguru import logger

from schools_api.lib.enrichment.stage import EnrichmentStage
from schools_api.lib.importer.parser import count_data_rows, inspect_source, read_batch
from schools_api.lib.jobs.checkpoint import (
    DEFAULT_BATCH_SIZE,
    BatchResult,
    ImportStatus,
    JobCheckpoint,
    advance,
    complete,
    fail,
    new_checkpoint,
    start,
)
from schools_api.lib.jobs.commit import CommitStage
from schools_api.lib.jobs.errors import (
    InfrastructureError,
    InvalidFormatError,
    JobNotFoundError,
    JobNotRestartableError,
)
from schools_api.lib.jobs.storage import SourceStorage


class CheckpointStore(Protocol):
    """Persistence of job checkpoints.

    ``save`` commits everything written since the last commit, including
    records inserted by the commit stage; ``rollback`` discards it.
    """

    async def create(self, checkpoint: JobCheckpoint) -> None: ...

    async def load(self, job_id: uuid.UUID) -> JobCheckpoint | None: ...

    async def save(self, checkpoint: JobCheckpoint) -> None: ...

    async def rollback(self) -> None: ...


def utcnow() -> datetime:
    return datetime.now(UTC)


def _describe(exc: BaseException) -> str:
    """Operator-facing message for a batch failure."""
    if isinstance(exc, FileNotFoundError):
        return f"Source file not found: {exc.filename or exc}"
    if isinstance(exc, OSError):
        return f"Cannot read source file: {exc}"
    return str(exc) or type(exc).__name__


class ImportJobController:
    """Creates import jobs and advances them one batch at a time.

    Args:
        checkpoints: Checkpoint persistence.
        storage: Where uploaded sources live.
        enrichment: Enrichment stage for raw rows.
        commit: Commit stage for normalized records.
        batch_size: Rows per batch for new jobs.
        max_logged_errors: Cap of row errors kept on a job.
        clock: Source of the current time.
    """

    def __init__(
        self,
        checkpoints: CheckpointStore,
        storage: SourceStorage,
        enrichment: EnrichmentStage,
        commit: CommitStage,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_logged_errors: int = 200,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._checkpoints = checkpoints
        self._storage = storage
        self._enrichment = enrichment
        self._commit = commit
        self._batch_size = batch_size
        self._max_logged_errors = max_logged_errors
        self._clock = clock

    async def create_job(self, file_name: str, content: bytes) -> JobCheckpoint:
        """Store an uploaded CSV and register a queued job for it.

        Args:
            file_name: Original file name, kept for display.
            content: Raw CSV bytes.

        Returns:
            The queued checkpoint, ``total_records`` set to the data row count.

        Raises:
            InvalidFormatError: If the header cannot be parsed, lacks the
                name/postal code columns, or no data rows follow it.
            InfrastructureError: If the file cannot be stored or read back.
        """
        job_id = uuid.uuid4()
        try:
            stored_path = await self._storage.save(job_id, content)
        except OSError as e:
            msg = f"Cannot store uploaded file: {e}"
            raise InfrastructureError(msg) from e

        try:
            total = await self._count_rows(self._storage.local_path(stored_path))
        except OSError as e:
            await self._discard_source(stored_path)
            msg = f"Cannot read uploaded file: {e}"
            raise InfrastructureError(msg) from e
        except Exception:
            await self._discard_source(stored_path)
            raise

        checkpoint = new_checkpoint(
            job_id,
            file_name=file_name,
            file_path=stored_path,
            total_records=total,
            batch_size=self._batch_size,
            now=self._clock(),
        )
        await self._checkpoints.create(checkpoint)
        logger.info(f"Created import job {job_id} for {file_name!r}: {total} rows, batch size {self._batch_size}")
        return checkpoint

    async def get_status(self, job_id: uuid.UUID) -> JobCheckpoint:
        """Return the current checkpoint of a job.

        Raises:
            JobNotFoundError: If the job does not exist.
        """
        checkpoint = await self._checkpoints.load(job_id)
        if checkpoint is None:
            raise JobNotFoundError(job_id)
        return checkpoint

    async def process_next_batch(self, job_id: uuid.UUID) -> BatchResult:
        """Advance a job by one batch.

        Terminal jobs are returned as-is.  Any error while reading,
        enriching or committing rolls back the batch and marks the job
        failed at its last committed checkpoint.

        Raises:
            JobNotFoundError: If the job does not exist.
            InfrastructureError: If the failure itself cannot be recorded.
        """
        batch_started = time.monotonic()
        checkpoint = await self.get_status(job_id)
        if checkpoint.is_terminal:
            return BatchResult.from_checkpoint(checkpoint)

        try:
            updated = await self._run_batch(checkpoint)
        except Exception as e:
            failed = await self._record_failure(checkpoint, e)
            return BatchResult.from_checkpoint(failed, batch_time_ms=self._elapsed_ms(batch_started))

        batch_time_ms = self._elapsed_ms(batch_started)
        if updated.status == ImportStatus.COMPLETED:
            logger.info(
                f"Import job {job_id} completed: {updated.processed_records} processed, "
                f"{updated.inserted_records} inserted, {updated.skipped_records} skipped, "
                f"{updated.failed_records} failed in {updated.error_details.get('elapsed_formatted')}"
            )
            await self._discard_source(updated.file_path)
        return BatchResult.from_checkpoint(updated, batch_time_ms=batch_time_ms)

    async def restart_job(self, job_id: uuid.UUID) -> JobCheckpoint:
        """Create a new job from the retained source of a failed job.

        Raises:
            JobNotFoundError: If the job does not exist.
            JobNotRestartableError: If the job did not fail or its source is gone.
        """
        checkpoint = await self.get_status(job_id)
        if checkpoint.status != ImportStatus.FAILED:
            msg = f"Import job {job_id} is {checkpoint.status}; only failed jobs can be restarted"
            raise JobNotRestartableError(msg)
        if not checkpoint.file_path or not await self._storage.exists(checkpoint.file_path):
            msg = f"Source file of import job {job_id} is no longer available"
            raise JobNotRestartableError(msg)

        content = await self._storage.load(checkpoint.file_path)
        restarted = await self.create_job(checkpoint.file_name, content)
        await self._discard_source(checkpoint.file_path)
        logger.info(f"Restarted failed import job {job_id} as {restarted.id}")
        return restarted

    async def run_to_completion(
        self,
        job_id: uuid.UUID,
        on_batch: Callable[[BatchResult], Awaitable[None] | None] | None = None,
    ) -> BatchResult:
        """Call ``process_next_batch`` until the job reaches a terminal status."""
        while True:
            result = await self.process_next_batch(job_id)
            if on_batch is not None:
                maybe_awaitable = on_batch(result)
                if maybe_awaitable is not None:
                    await maybe_awaitable
            if result.done:
                return result

    async def _run_batch(self, checkpoint: JobCheckpoint) -> JobCheckpoint:
        if not checkpoint.file_path:
            msg = f"Import job {checkpoint.id} has no source file"
            raise InfrastructureError(msg)

        working = start(checkpoint, self._clock())
        path = self._storage.local_path(checkpoint.file_path)
        layout = await asyncio.to_thread(inspect_source, path)
        batch = await asyncio.to_thread(read_batch, path, layout, working.cursor_line, working.batch_size)

        if batch.rows:
            enrichment = await self._enrichment.enrich(batch.rows)
            outcome = await self._commit.commit(enrichment.records)
            working = advance(
                working,
                rows_read=len(batch.rows),
                inserted=outcome.inserted,
                skipped=len(enrichment.skipped) + outcome.skipped,
                failed=outcome.failed,
                row_errors=enrichment.skipped + outcome.errors,
                max_logged_errors=self._max_logged_errors,
            )
            logger.info(
                f"Import job {checkpoint.id} batch {working.current_batch}: rows "
                f"{checkpoint.cursor_line + 1}-{working.cursor_line} → {outcome.inserted} inserted, "
                f"{len(enrichment.skipped) + outcome.skipped} skipped, {outcome.failed} failed "
                f"({working.processed_records}/{working.total_records})"
            )

        if not batch.has_more:
            working = complete(working, self._clock())

        await self._checkpoints.save(working)
        return working

    async def _record_failure(self, checkpoint: JobCheckpoint, exc: Exception) -> JobCheckpoint:
        message = _describe(exc)
        logger.opt(exception=exc).error(f"Import job {checkpoint.id} failed at line {checkpoint.cursor_line}: {message}")
        failed = fail(checkpoint, message, self._clock())
        try:
            await self._checkpoints.rollback()
            await self._checkpoints.save(failed)
        except InfrastructureError:
            raise
        except Exception as e:
            msg = f"Cannot record failure of import job {checkpoint.id}: {e}"
            raise InfrastructureError(msg) from e
        return failed

    async def _count_rows(self, path: Path) -> int:
        layout = await asyncio.to_thread(inspect_source, path)
        total = await asyncio.to_thread(count_data_rows, path, layout)
        if total == 0:
            msg = "CSV file has a header but no data rows"
            raise InvalidFormatError(msg)
        return total

    async def _discard_source(self, stored_path: str | None) -> None:
        if not stored_path:
            return
        try:
            await self._storage.delete(stored_path)
        except OSError as e:
            logger.warning(f"Could not delete import source {stored_path}: {e}")

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
