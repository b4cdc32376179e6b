"""Error taxonomy for the import engine.

Job-level errors are exceptions.  Row-level problems are plain values
(``RowError``) that get counted and logged on the job; they never abort a
batch.
"""

from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import Any


class ImportEngineError(Exception):
    """Base class for import engine errors."""


class InfrastructureError(ImportEngineError):
    """The source file or the record store cannot be reached.

    Aborts the current batch and marks the job failed.
    """


class InvalidFormatError(ImportEngineError):
    """The uploaded file has no parseable header or no usable rows."""


class JobNotFoundError(ImportEngineError):
    """No import job exists with the requested id."""

    def __init__(self, job_id: object) -> None:
        self.job_id = job_id
        super().__init__(f"Import job {job_id} not found")


class JobNotRestartableError(ImportEngineError):
    """The job cannot be restarted (not failed, or its source file is gone)."""


class InsertError(Exception):
    """A record store insert failed for a reason other than infrastructure.

    Args:
        message: Driver or store error message.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class DuplicateKeyError(InsertError):
    """An insert violated the store's uniqueness constraint on slug."""


class RowErrorKind(StrEnum):
    """Why a row did not end up inserted."""

    ENRICHMENT_SKIP = "enrichment_skip"
    DUPLICATE_SKIP = "duplicate_skip"
    DUPLICATE_KEY_RETRY_EXHAUSTED = "duplicate_key_retry_exhausted"
    INSERT_ERROR = "insert_error"


# Kinds that count towards skipped_records; the rest count as failed_records.
SKIP_KINDS = frozenset({RowErrorKind.ENRICHMENT_SKIP, RowErrorKind.DUPLICATE_SKIP})


@dataclass(frozen=True)
class RowError:
    """A row excluded from insertion, with a human-readable reason."""

    line: int
    kind: RowErrorKind
    reason: str
    name: str | None = None

    @property
    def is_skip(self) -> bool:
        return self.kind in SKIP_KINDS

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


def enrichment_skip(line: int, reason: str, name: str | None = None) -> RowError:
    """Build the row error for a row lacking mandatory fields."""
    return RowError(line=line, kind=RowErrorKind.ENRICHMENT_SKIP, reason=reason, name=name)
