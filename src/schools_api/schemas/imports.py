"""Import job Pydantic v2 request/response schemas."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from schools_api.schemas.common import PaginationMeta


class ImportActionRequest(BaseModel):
    """JSON body of the action-style import endpoint."""

    action: Literal["process", "status", "restart"]
    job_id: UUID


class ImportCreatedResponse(BaseModel):
    """Returned when a job is created from an upload or a restart."""

    job_id: UUID
    total_rows: int = Field(description="Data rows found in the source file")


class BatchResultResponse(BaseModel):
    """Outcome of one batch call, with the job's cumulative counters."""

    done: bool
    status: str
    cursor_line: int
    processed_records: int
    inserted_records: int
    skipped_records: int
    failed_records: int
    current_batch: int
    total_records: int
    batch_time_ms: int = 0
    error_message: str | None = None

    model_config = {"from_attributes": True}


class ImportJobResponse(BaseModel):
    """Import job status and metadata."""

    id: UUID
    job_type: str
    file_name: str
    status: str
    total_records: int
    processed_records: int
    inserted_records: int
    skipped_records: int
    failed_records: int
    current_batch: int
    batch_size: int
    cursor_line: int
    error_message: str | None = None
    error_details: dict | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class PaginatedImportJobResponse(BaseModel):
    """Paginated list of import jobs."""

    items: list[ImportJobResponse]
    pagination: PaginationMeta


class RunStartedResponse(BaseModel):
    """Returned when a job is handed to the background runner."""

    job_id: UUID
    task_id: str
    status: str
