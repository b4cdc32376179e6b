"""School record store backed by SQLAlchemy.

Implements the commit stage's ``RecordStore`` protocol.  Each insert runs in
a SAVEPOINT so a rejected attempt only discards itself; the enclosing
transaction is committed together with the job checkpoint.
"""

import uuid

from loguru import logger
from sqlalchemy import insert, select
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from schools_api.lib.importer.records import NormalizedSchoolRecord
from schools_api.lib.jobs.errors import DuplicateKeyError, InfrastructureError, InsertError
from schools_api.models.school import School

_UNIQUE_VIOLATION = "23505"

# Bound parameters per IN (...) lookup
_LOOKUP_CHUNK = 1000


def is_unique_violation(error: IntegrityError) -> bool:
    """Tell a uniqueness violation apart from other integrity errors.

    asyncpg exposes the SQLSTATE on the wrapped exception; SQLite only says
    so in the message.
    """
    orig = error.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == _UNIQUE_VIOLATION:
        return True
    message = str(orig).lower()
    return "unique" in message or "duplicate key" in message


class SqlSchoolStore:
    """Insert normalized schools into the ``schools`` table.

    Args:
        session: Session shared with the checkpoint store.
        job_id: Import job recorded as ``imported_by_job_id``.
    """

    def __init__(self, session: AsyncSession, job_id: uuid.UUID | None = None) -> None:
        self._session = session
        self._job_id = job_id

    async def existing_fingerprints(self, fingerprints: list[str]) -> set[str]:
        """Return the subset of ``fingerprints`` already present in ``schools``."""
        found: set[str] = set()
        try:
            for start in range(0, len(fingerprints), _LOOKUP_CHUNK):
                chunk = fingerprints[start : start + _LOOKUP_CHUNK]
                result = await self._session.execute(
                    select(School.import_fingerprint).where(School.import_fingerprint.in_(chunk))
                )
                found.update(value for value in result.scalars().all() if value is not None)
        except (OperationalError, InterfaceError) as e:
            msg = f"Record store unavailable: {e.orig}"
            raise InfrastructureError(msg) from e
        return found

    async def insert_many(self, records: list[NormalizedSchoolRecord]) -> None:
        """Insert records atomically inside a SAVEPOINT.

        Raises:
            DuplicateKeyError: If a slug is already taken.
            InsertError: On any other rejected insert.
            InfrastructureError: If the database cannot be reached.
        """
        if not records:
            return
        rows = [{**record.to_row(), "imported_by_job_id": self._job_id} for record in records]
        try:
            async with self._session.begin_nested():
                await self._session.execute(insert(School), rows)
        except IntegrityError as e:
            if is_unique_violation(e):
                raise DuplicateKeyError(str(e.orig)) from e
            raise InsertError(str(e.orig)) from e
        except (OperationalError, InterfaceError) as e:
            logger.error(f"Record store unavailable during insert of {len(rows)} rows")
            msg = f"Record store unavailable: {e.orig}"
            raise InfrastructureError(msg) from e
        except DBAPIError as e:
            raise InsertError(str(e.orig)) from e
