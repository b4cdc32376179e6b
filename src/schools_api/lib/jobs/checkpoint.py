"""Import job checkpoint and its state transitions.

``JobCheckpoint`` is the in-memory image of one ``import_jobs`` row.  The
transitions below are pure: they return a new checkpoint and never touch
storage, so the whole state machine can be exercised without a database.

State machine::

    queued ──start──▶ processing ──complete──▶ completed
       │                  │
       └──────fail────────┴──────fail────────▶ failed

``completed`` and ``failed`` are terminal; no transition leaves them.
"""

import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import Any

from schools_api.lib.jobs.errors import RowError
from schools_api.lib.jobs.progress import elapsed_ms, format_elapsed

JOB_TYPE_SCHOOLS_CSV = "schools_csv"
DEFAULT_BATCH_SIZE = 1500


class ImportStatus(StrEnum):
    """Lifecycle status of an import job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({ImportStatus.COMPLETED, ImportStatus.FAILED})


class InvalidTransitionError(ValueError):
    """A transition was applied to a checkpoint in the wrong state."""


@dataclass(frozen=True)
class JobCheckpoint:
    """Persistent progress of an import job."""

    id: uuid.UUID
    file_name: str
    file_path: str | None = None
    job_type: str = JOB_TYPE_SCHOOLS_CSV
    status: ImportStatus = ImportStatus.QUEUED
    total_records: int = 0
    processed_records: int = 0
    inserted_records: int = 0
    skipped_records: int = 0
    failed_records: int = 0
    current_batch: int = 0
    batch_size: int = DEFAULT_BATCH_SIZE
    cursor_line: int = 0
    error_message: str | None = None
    error_details: dict[str, Any] = field(default_factory=dict)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly snapshot."""
        data = asdict(self)
        data["id"] = str(self.id)
        data["status"] = self.status.value
        for key in ("started_at", "completed_at", "created_at"):
            value = data[key]
            data[key] = value.isoformat() if value is not None else None
        return data


@dataclass(frozen=True)
class BatchResult:
    """What one ``process_next_batch`` call reports back to its caller."""

    done: bool
    status: ImportStatus
    cursor_line: int
    processed_records: int
    inserted_records: int
    skipped_records: int
    failed_records: int
    current_batch: int
    total_records: int
    batch_time_ms: int = 0
    error_message: str | None = None

    @classmethod
    def from_checkpoint(cls, checkpoint: JobCheckpoint, *, batch_time_ms: int = 0) -> "BatchResult":
        return cls(
            done=checkpoint.is_terminal,
            status=checkpoint.status,
            cursor_line=checkpoint.cursor_line,
            processed_records=checkpoint.processed_records,
            inserted_records=checkpoint.inserted_records,
            skipped_records=checkpoint.skipped_records,
            failed_records=checkpoint.failed_records,
            current_batch=checkpoint.current_batch,
            total_records=checkpoint.total_records,
            batch_time_ms=batch_time_ms,
            error_message=checkpoint.error_message,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


def new_checkpoint(
    job_id: uuid.UUID,
    *,
    file_name: str,
    file_path: str | None,
    total_records: int,
    batch_size: int,
    now: datetime,
) -> JobCheckpoint:
    """Checkpoint of a freshly created job: queued at cursor 0."""
    if batch_size <= 0:
        msg = f"batch_size must be positive, got {batch_size}"
        raise ValueError(msg)
    return JobCheckpoint(
        id=job_id,
        file_name=file_name,
        file_path=file_path,
        total_records=total_records,
        batch_size=batch_size,
        created_at=now,
    )


def _require_open(checkpoint: JobCheckpoint, transition: str) -> None:
    if checkpoint.is_terminal:
        msg = f"Cannot {transition} job {checkpoint.id}: status is {checkpoint.status}"
        raise InvalidTransitionError(msg)


def start(checkpoint: JobCheckpoint, now: datetime) -> JobCheckpoint:
    """Move a queued job to processing, stamping ``started_at``.

    A job already processing is returned unchanged.
    """
    _require_open(checkpoint, "start")
    if checkpoint.status == ImportStatus.PROCESSING:
        return checkpoint
    return replace(checkpoint, status=ImportStatus.PROCESSING, started_at=now)


def append_row_errors(
    details: dict[str, Any],
    errors: list[RowError],
    max_logged: int,
) -> dict[str, Any]:
    """Return ``details`` with ``errors`` appended to its capped error log.

    Errors beyond ``max_logged`` are only counted in ``row_errors_truncated``.
    """
    logged = list(details.get("row_errors", []))
    truncated = int(details.get("row_errors_truncated", 0))
    room = max(max_logged - len(logged), 0)
    logged.extend(error.to_dict() for error in errors[:room])
    truncated += max(len(errors) - room, 0)

    updated = dict(details)
    updated["row_errors"] = logged
    updated["row_errors_truncated"] = truncated
    return updated


def advance(
    checkpoint: JobCheckpoint,
    *,
    rows_read: int,
    inserted: int,
    skipped: int,
    failed: int,
    row_errors: list[RowError] | None = None,
    max_logged_errors: int = 200,
) -> JobCheckpoint:
    """Record one committed batch.

    Moves the cursor past the rows read, adds their outcome to the counters
    and bumps ``current_batch``.

    Raises:
        InvalidTransitionError: If the job is not processing.
        ValueError: If no rows were read or the outcome does not account
            for every row read.
    """
    _require_open(checkpoint, "advance")
    if checkpoint.status != ImportStatus.PROCESSING:
        msg = f"Cannot advance job {checkpoint.id}: status is {checkpoint.status}"
        raise InvalidTransitionError(msg)
    if rows_read <= 0:
        msg = "A batch must consume at least one row"
        raise ValueError(msg)
    if inserted + skipped + failed != rows_read:
        msg = (
            f"Batch outcome does not account for every row: "
            f"{inserted} inserted + {skipped} skipped + {failed} failed != {rows_read} read"
        )
        raise ValueError(msg)

    processed = checkpoint.processed_records + rows_read
    details = checkpoint.error_details
    if row_errors:
        details = append_row_errors(details, row_errors, max_logged_errors)

    return replace(
        checkpoint,
        cursor_line=checkpoint.cursor_line + rows_read,
        processed_records=processed,
        inserted_records=checkpoint.inserted_records + inserted,
        skipped_records=checkpoint.skipped_records + skipped,
        failed_records=checkpoint.failed_records + failed,
        current_batch=checkpoint.current_batch + 1,
        total_records=max(checkpoint.total_records, processed),
        error_details=details,
    )


def complete(checkpoint: JobCheckpoint, now: datetime) -> JobCheckpoint:
    """Mark the job completed and record the elapsed time."""
    _require_open(checkpoint, "complete")
    took_ms = elapsed_ms(checkpoint.started_at or now, now)
    details = dict(checkpoint.error_details)
    details["elapsed_ms"] = took_ms
    details["elapsed_formatted"] = format_elapsed(took_ms)
    return replace(
        checkpoint,
        status=ImportStatus.COMPLETED,
        started_at=checkpoint.started_at or now,
        completed_at=now,
        total_records=checkpoint.processed_records,
        error_details=details,
    )


def fail(checkpoint: JobCheckpoint, message: str, now: datetime) -> JobCheckpoint:
    """Mark the job failed, keeping its cursor and counters."""
    _require_open(checkpoint, "fail")
    return replace(
        checkpoint,
        status=ImportStatus.FAILED,
        error_message=message,
        completed_at=now,
    )
