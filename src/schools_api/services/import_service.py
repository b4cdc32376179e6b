"""Import job service: SQL checkpoint store and controller wiring.

Maps ``JobCheckpoint`` values to ``import_jobs`` rows and assembles an
``ImportJobController`` over one database session.  The session is shared
by the checkpoint store and the school store, so a batch's inserted schools
and its advanced checkpoint commit in the same transaction.
"""

import math
import uuid
from collections.abc import Awaitable, Callable
from pathlib import Path

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from schools_api.core.config import Settings
from schools_api.lib.enrichment import build_enrichment_stage
from schools_api.lib.enrichment.stage import EnrichmentStage
from schools_api.lib.jobs.checkpoint import BatchResult, ImportStatus, JobCheckpoint
from schools_api.lib.jobs.commit import CommitRetryPolicy, CommitStage
from schools_api.lib.jobs.controller import ImportJobController
from schools_api.lib.jobs.errors import InfrastructureError
from schools_api.lib.jobs.storage import LocalSourceStorage, SourceStorage
from schools_api.models.import_job import ImportJob
from schools_api.schemas.common import PaginationMeta
from schools_api.services.school_service import SqlSchoolStore


def _to_checkpoint(job: ImportJob) -> JobCheckpoint:
    return JobCheckpoint(
        id=job.id,
        file_name=job.file_name,
        file_path=job.file_path,
        job_type=job.job_type,
        status=ImportStatus(job.status),
        total_records=job.total_records,
        processed_records=job.processed_records,
        inserted_records=job.inserted_records,
        skipped_records=job.skipped_records,
        failed_records=job.failed_records,
        current_batch=job.current_batch,
        batch_size=job.batch_size,
        cursor_line=job.cursor_line,
        error_message=job.error_message,
        error_details=dict(job.error_details or {}),
        started_at=job.started_at,
        completed_at=job.completed_at,
        created_at=job.created_at,
    )


def _apply(job: ImportJob, checkpoint: JobCheckpoint) -> None:
    job.status = checkpoint.status.value
    job.file_path = checkpoint.file_path
    job.total_records = checkpoint.total_records
    job.processed_records = checkpoint.processed_records
    job.inserted_records = checkpoint.inserted_records
    job.skipped_records = checkpoint.skipped_records
    job.failed_records = checkpoint.failed_records
    job.current_batch = checkpoint.current_batch
    job.batch_size = checkpoint.batch_size
    job.cursor_line = checkpoint.cursor_line
    job.error_message = checkpoint.error_message
    job.error_details = dict(checkpoint.error_details) or None
    job.started_at = checkpoint.started_at
    job.completed_at = checkpoint.completed_at


class SqlCheckpointStore:
    """CheckpointStore over the ``import_jobs`` table.

    Args:
        session: Session shared with the school store.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, checkpoint: JobCheckpoint) -> None:
        job = ImportJob(
            id=checkpoint.id,
            job_type=checkpoint.job_type,
            file_name=checkpoint.file_name,
        )
        _apply(job, checkpoint)
        if checkpoint.created_at is not None:
            job.created_at = checkpoint.created_at
        try:
            self._session.add(job)
            await self._session.commit()
        except (OperationalError, InterfaceError) as e:
            msg = f"Checkpoint store unavailable: {e.orig}"
            raise InfrastructureError(msg) from e

    async def load(self, job_id: uuid.UUID) -> JobCheckpoint | None:
        try:
            job = await self._get(job_id)
        except (OperationalError, InterfaceError) as e:
            msg = f"Checkpoint store unavailable: {e.orig}"
            raise InfrastructureError(msg) from e
        return _to_checkpoint(job) if job is not None else None

    async def save(self, checkpoint: JobCheckpoint) -> None:
        """Write the checkpoint and commit the batch transaction."""
        try:
            job = await self._get(checkpoint.id)
            if job is None:
                msg = f"Import job {checkpoint.id} disappeared while processing"
                raise InfrastructureError(msg)
            _apply(job, checkpoint)
            await self._session.commit()
        except (OperationalError, InterfaceError) as e:
            msg = f"Checkpoint store unavailable: {e.orig}"
            raise InfrastructureError(msg) from e

    async def rollback(self) -> None:
        await self._session.rollback()

    async def _get(self, job_id: uuid.UUID) -> ImportJob | None:
        result = await self._session.execute(
            select(ImportJob).where(ImportJob.id == job_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()


def build_commit_policy(settings: Settings) -> CommitRetryPolicy:
    """Commit cascade parameters from settings."""
    return CommitRetryPolicy(
        sub_batch_size=settings.import_insert_sub_batch_size,
        suffix_length=settings.import_disambiguation_suffix_length,
        skip_known_fingerprints=settings.import_skip_known_fingerprints,
    )


def build_source_storage(settings: Settings) -> LocalSourceStorage:
    """Local storage rooted at the configured upload directory."""
    return LocalSourceStorage(Path(settings.import_upload_dir))


def build_controller(
    session: AsyncSession,
    settings: Settings,
    *,
    storage: SourceStorage | None = None,
    enrichment: EnrichmentStage | None = None,
    job_id: uuid.UUID | None = None,
) -> ImportJobController:
    """Assemble an ImportJobController over one session.

    Args:
        session: Database session for both checkpoint and school writes.
        settings: Application settings.
        storage: Source storage (defaults to the configured upload dir).
        enrichment: Enrichment stage (defaults to the configured providers).
        job_id: Job whose rows the school store stamps as their origin.
    """
    school_store = SqlSchoolStore(session, job_id)
    return ImportJobController(
        SqlCheckpointStore(session),
        storage or build_source_storage(settings),
        enrichment or build_enrichment_stage(settings),
        CommitStage(school_store, build_commit_policy(settings)),
        batch_size=settings.import_batch_size,
        max_logged_errors=settings.import_max_logged_errors,
    )


async def get_import_job(session: AsyncSession, job_id: uuid.UUID) -> ImportJob | None:
    """Get an import job by ID.

    Args:
        session: Database session.
        job_id: The import job ID.

    Returns:
        The ImportJob or None if not found.
    """
    result = await session.execute(select(ImportJob).where(ImportJob.id == job_id))
    return result.scalar_one_or_none()


async def list_import_jobs(
    session: AsyncSession,
    *,
    status: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[ImportJob], int]:
    """List import jobs with optional filters.

    Args:
        session: Database session.
        status: Filter by status.
        page: Page number.
        page_size: Items per page.

    Returns:
        Tuple of (jobs, total count).
    """
    query = select(ImportJob)
    count_query = select(func.count(ImportJob.id))

    if status:
        query = query.where(ImportJob.status == status)
        count_query = count_query.where(ImportJob.status == status)

    total = (await session.execute(count_query)).scalar_one()
    offset = (page - 1) * page_size
    query = query.order_by(ImportJob.created_at.desc()).offset(offset).limit(page_size)
    result = await session.execute(query)
    jobs = list(result.scalars().all())

    return jobs, total


def pagination_meta(total: int, page: int, page_size: int) -> PaginationMeta:
    """Build pagination metadata for a listing."""
    return PaginationMeta(
        total=total,
        page=page,
        page_size=page_size,
        total_pages=max(1, math.ceil(total / page_size)),
    )


async def drive_import_job(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    job_id: uuid.UUID,
    *,
    storage: SourceStorage | None = None,
    enrichment: EnrichmentStage | None = None,
    on_batch: Callable[[BatchResult], Awaitable[None] | None] | None = None,
) -> BatchResult:
    """Process a job batch after batch until it completes or fails.

    Each batch gets a fresh session, mirroring independent invocations.

    Args:
        session_factory: Factory for per-batch sessions.
        settings: Application settings.
        job_id: Job to drive.
        storage: Source storage (defaults to the configured upload dir).
        enrichment: Enrichment stage (defaults to the configured providers).
        on_batch: Optional callback receiving every BatchResult.

    Returns:
        The final (terminal) BatchResult.
    """
    storage = storage or build_source_storage(settings)
    enrichment = enrichment or build_enrichment_stage(settings)
    logger.info(f"Driving import job {job_id} to completion")
    while True:
        async with session_factory() as session:
            controller = build_controller(session, settings, storage=storage, enrichment=enrichment, job_id=job_id)
            result = await controller.process_next_batch(job_id)
        if on_batch is not None:
            maybe_awaitable = on_batch(result)
            if maybe_awaitable is not None:
                await maybe_awaitable
        if result.done:
            logger.info(f"Import job {job_id} finished with status {result.status}")
            return result
