"""Import API endpoints.

POST /imports/schools (multipart upload, or JSON ``{action, job_id}`` with
action ``process``, ``status`` or ``restart``),
GET /imports/schools/{job_id} (status), POST /imports/schools/{job_id}/process
(one batch), POST /imports/schools/{job_id}/run (drive in background),
GET /imports (list jobs).
"""

import uuid
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import UploadFile

from schools_api.core.background import task_runner
from schools_api.core.config import Settings, get_settings
from schools_api.core.database import get_session_factory
from schools_api.core.dependencies import (
    ControllerFactory,
    get_async_session,
    get_controller_factory,
    get_enrichment_stage,
    get_source_storage,
)
from schools_api.lib.enrichment.stage import EnrichmentStage
from schools_api.lib.jobs.checkpoint import ImportStatus
from schools_api.lib.jobs.storage import SourceStorage
from schools_api.schemas.common import PaginationParams
from schools_api.schemas.imports import (
    BatchResultResponse,
    ImportActionRequest,
    ImportCreatedResponse,
    ImportJobResponse,
    PaginatedImportJobResponse,
    RunStartedResponse,
)
from schools_api.services import import_service

router = APIRouter(prefix="/imports", tags=["imports"])

_NO_FILE_ERROR = "No file provided"


def error_response(status_code: int, message: str) -> JSONResponse:
    """``{"error": message}`` with the given status."""
    return JSONResponse(status_code=status_code, content={"error": message})


def _driven_in_background(job_id: uuid.UUID) -> JSONResponse | None:
    """409 response when a background driver owns the job."""
    if task_runner.is_running(str(job_id)):
        return error_response(status.HTTP_409_CONFLICT, f"Import job {job_id} is being processed in the background")
    return None


async def _create_from_upload(request: Request, controller_factory: ControllerFactory, settings: Settings) -> Any:
    form = await request.form()
    upload = form.get("file")
    if not isinstance(upload, UploadFile) or not upload.filename:
        return error_response(status.HTTP_400_BAD_REQUEST, _NO_FILE_ERROR)

    max_bytes = settings.import_max_file_size_mb * 1024 * 1024
    content = await upload.read()
    if len(content) > max_bytes:
        return error_response(
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            f"File exceeds maximum size of {settings.import_max_file_size_mb} MB",
        )

    checkpoint = await controller_factory(None).create_job(upload.filename, content)
    return ImportCreatedResponse(job_id=checkpoint.id, total_rows=checkpoint.total_records).model_dump(mode="json")


@router.post("/schools")
async def import_schools(
    request: Request,
    controller_factory: Annotated[ControllerFactory, Depends(get_controller_factory)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> Any:
    """Upload a school CSV, or run an action on an existing import job.

    A multipart body creates a job and returns ``{job_id, total_rows}``.
    A JSON body ``{action, job_id}`` processes the next batch, returns the
    job status, or restarts a failed job.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        return await _create_from_upload(request, controller_factory, settings)

    try:
        body = await request.json()
        action = ImportActionRequest.model_validate(body)
    except ValueError as e:
        # ValidationError is a ValueError; so is a malformed JSON body
        detail = e.errors()[0]["msg"] if isinstance(e, ValidationError) else "Request body must be JSON"
        return error_response(status.HTTP_400_BAD_REQUEST, f"Invalid request: {detail}")

    controller = controller_factory(action.job_id)
    if action.action == "process":
        if (conflict := _driven_in_background(action.job_id)) is not None:
            return conflict
        result = await controller.process_next_batch(action.job_id)
        return BatchResultResponse.model_validate(result).model_dump(mode="json")
    if action.action == "status":
        checkpoint = await controller.get_status(action.job_id)
        return ImportJobResponse.model_validate(checkpoint).model_dump(mode="json")

    restarted = await controller.restart_job(action.job_id)
    return ImportCreatedResponse(job_id=restarted.id, total_rows=restarted.total_records).model_dump(mode="json")


@router.get("/schools/{job_id}", response_model=ImportJobResponse)
async def get_school_import(
    job_id: uuid.UUID,
    controller_factory: Annotated[ControllerFactory, Depends(get_controller_factory)],
) -> ImportJobResponse:
    """Get import job status by ID."""
    checkpoint = await controller_factory(job_id).get_status(job_id)
    return ImportJobResponse.model_validate(checkpoint)


@router.post("/schools/{job_id}/process", response_model=BatchResultResponse)
async def process_school_import_batch(
    job_id: uuid.UUID,
    controller_factory: Annotated[ControllerFactory, Depends(get_controller_factory)],
) -> Any:
    """Process the next batch of an import job."""
    if (conflict := _driven_in_background(job_id)) is not None:
        return conflict
    result = await controller_factory(job_id).process_next_batch(job_id)
    return BatchResultResponse.model_validate(result)


@router.post("/schools/{job_id}/run", response_model=RunStartedResponse, status_code=202)
async def run_school_import(
    job_id: uuid.UUID,
    controller_factory: Annotated[ControllerFactory, Depends(get_controller_factory)],
    settings: Annotated[Settings, Depends(get_settings)],
    storage: Annotated[SourceStorage, Depends(get_source_storage)],
    enrichment: Annotated[EnrichmentStage, Depends(get_enrichment_stage)],
) -> Any:
    """Drive an import job to completion in the background."""
    checkpoint = await controller_factory(job_id).get_status(job_id)
    if checkpoint.is_terminal:
        return error_response(status.HTTP_409_CONFLICT, f"Import job {job_id} is already {checkpoint.status}")

    task_id = task_runner.submit_task(
        import_service.drive_import_job(
            get_session_factory(),
            settings,
            job_id,
            storage=storage,
            enrichment=enrichment,
        ),
        key=str(job_id),
    )
    logger.info(f"Import job {job_id} handed to background task {task_id}")
    return RunStartedResponse(job_id=job_id, task_id=task_id, status=str(task_runner.get_status(task_id)))


@router.get("", response_model=PaginatedImportJobResponse)
async def list_imports(
    session: Annotated[AsyncSession, Depends(get_async_session)],
    pagination: Annotated[PaginationParams, Depends()],
    import_status: ImportStatus | None = None,
) -> PaginatedImportJobResponse:
    """List import jobs with optional status filter."""
    jobs, total = await import_service.list_import_jobs(
        session,
        status=import_status.value if import_status else None,
        page=pagination.page,
        page_size=pagination.page_size,
    )
    return PaginatedImportJobResponse(
        items=[ImportJobResponse.model_validate(j) for j in jobs],
        pagination=import_service.pagination_meta(total, pagination.page, pagination.page_size),
    )
