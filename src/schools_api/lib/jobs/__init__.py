"""Import job library: checkpoint state machine, commit stage and controller.

Only the dependency-free pieces are re-exported here; import
``schools_api.lib.jobs.controller`` and ``schools_api.lib.jobs.commit``
directly.
"""

from schools_api.lib.jobs.checkpoint import (
    TERMINAL_STATUSES,
    BatchResult,
    ImportStatus,
    JobCheckpoint,
)
from schools_api.lib.jobs.errors import (
    DuplicateKeyError,
    ImportEngineError,
    InfrastructureError,
    InsertError,
    InvalidFormatError,
    JobNotFoundError,
    JobNotRestartableError,
    RowError,
    RowErrorKind,
)

__all__ = [
    "TERMINAL_STATUSES",
    "BatchResult",
    "DuplicateKeyError",
    "ImportEngineError",
    "ImportStatus",
    "InfrastructureError",
    "InsertError",
    "InvalidFormatError",
    "JobCheckpoint",
    "JobNotFoundError",
    "JobNotRestartableError",
    "RowError",
    "RowErrorKind",
]
