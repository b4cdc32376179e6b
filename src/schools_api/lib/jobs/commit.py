"""Commit stage: dedup-aware insertion of normalized schools.

Insertion follows a fallback cascade expressed as data
(``CommitRetryPolicy.levels``):

1. ``BULK``: insert a whole sub-batch in one statement;
2. ``SINGLE``: on failure, insert the sub-batch row by row to isolate the
   offenders;
3. ``DISAMBIGUATE``: a row whose slug still collides gets a short
   fingerprint suffix and one more attempt.

Fingerprints already in the store are skipped.  Repeats inside one batch
are not: they go through the cascade and land on distinct suffixes.

A ``DuplicateKeyError`` escalates a row to the next level.  Any other
``InsertError`` isolates rows at the bulk level and fails the row at row
level.  ``InfrastructureError`` is never caught here.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol

from loguru import logger

from schools_api.lib.importer.normalize import disambiguate_slug
from schools_api.lib.importer.records import NormalizedSchoolRecord
from schools_api.lib.jobs.errors import DuplicateKeyError, InsertError, RowError, RowErrorKind


class InsertLevel(StrEnum):
    """Granularity of one insert attempt."""

    BULK = "bulk"
    SINGLE = "single"
    DISAMBIGUATE = "disambiguate"


@dataclass(frozen=True)
class CommitRetryPolicy:
    """Parameters of the insert fallback cascade."""

    levels: tuple[InsertLevel, ...] = (InsertLevel.BULK, InsertLevel.SINGLE, InsertLevel.DISAMBIGUATE)
    sub_batch_size: int = 100
    suffix_length: int = 6
    skip_known_fingerprints: bool = True

    def __post_init__(self) -> None:
        if not self.levels:
            msg = "CommitRetryPolicy needs at least one level"
            raise ValueError(msg)
        if self.sub_batch_size <= 0:
            msg = "sub_batch_size must be positive"
            raise ValueError(msg)


class RecordStore(Protocol):
    """Destination of committed schools."""

    async def existing_fingerprints(self, fingerprints: list[str]) -> set[str]:
        """Return the subset of ``fingerprints`` already stored."""
        ...

    async def insert_many(self, records: list[NormalizedSchoolRecord]) -> None:
        """Insert all records or none.

        Raises:
            DuplicateKeyError: If a slug is already taken.
            InsertError: On any other rejected insert.
            InfrastructureError: If the store cannot be reached.
        """
        ...


@dataclass
class CommitOutcome:
    """Counts and row errors of one commit call."""

    inserted: int = 0
    skipped: int = 0
    failed: int = 0
    disambiguated: int = 0
    errors: list[RowError] = field(default_factory=list)

    def add_skip(self, record: NormalizedSchoolRecord, reason: str) -> None:
        self.skipped += 1
        self.errors.append(RowError(record.line, RowErrorKind.DUPLICATE_SKIP, reason, record.name))

    def add_failure(self, record: NormalizedSchoolRecord, kind: RowErrorKind, reason: str) -> None:
        self.failed += 1
        self.errors.append(RowError(record.line, kind, reason, record.name))


# A record waiting for the next level, with the error that sent it there.
_Pending = tuple[NormalizedSchoolRecord, InsertError | None]


def _count_occurrences(records: list[NormalizedSchoolRecord]) -> dict[int, int]:
    """Map each line to the number of earlier records sharing its fingerprint."""
    counts: dict[str, int] = {}
    occurrences: dict[int, int] = {}
    for record in records:
        occurrences[record.line] = counts.get(record.fingerprint, 0)
        counts[record.fingerprint] = occurrences[record.line] + 1
    return occurrences


class CommitStage:
    """Inserts normalized records into a RecordStore following a CommitRetryPolicy."""

    def __init__(self, store: RecordStore, policy: CommitRetryPolicy | None = None) -> None:
        self._store = store
        self._policy = policy or CommitRetryPolicy()

    @property
    def policy(self) -> CommitRetryPolicy:
        return self._policy

    async def commit(self, records: list[NormalizedSchoolRecord]) -> CommitOutcome:
        """Insert a batch of records.

        Args:
            records: Normalized records in source order.

        Returns:
            CommitOutcome where ``inserted + skipped + failed == len(records)``.

        Raises:
            InfrastructureError: If the store becomes unreachable.
        """
        outcome = CommitOutcome()
        candidates = await self._drop_known(records, outcome)
        occurrences = _count_occurrences(candidates)

        size = self._policy.sub_batch_size
        for start in range(0, len(candidates), size):
            await self._commit_sub_batch(candidates[start : start + size], outcome, occurrences)

        logger.debug(
            f"Committed {len(records)} records: {outcome.inserted} inserted "
            f"({outcome.disambiguated} disambiguated), {outcome.skipped} skipped, {outcome.failed} failed"
        )
        return outcome

    async def _drop_known(
        self,
        records: list[NormalizedSchoolRecord],
        outcome: CommitOutcome,
    ) -> list[NormalizedSchoolRecord]:
        if not self._policy.skip_known_fingerprints or not records:
            return list(records)

        known = await self._store.existing_fingerprints(sorted({r.fingerprint for r in records}))
        candidates: list[NormalizedSchoolRecord] = []
        for record in records:
            if record.fingerprint in known:
                outcome.add_skip(record, "School already imported")
            else:
                candidates.append(record)
        return candidates

    async def _commit_sub_batch(
        self,
        records: list[NormalizedSchoolRecord],
        outcome: CommitOutcome,
        occurrences: dict[int, int],
    ) -> None:
        pending: list[_Pending] = [(record, None) for record in records]
        for level in self._policy.levels:
            if not pending:
                return
            pending = await self._attempt(level, pending, outcome, occurrences)

        for record, error in pending:
            if isinstance(error, DuplicateKeyError):
                outcome.add_failure(
                    record,
                    RowErrorKind.DUPLICATE_KEY_RETRY_EXHAUSTED,
                    f"Slug {record.slug!r} still collides after retry: {error.message}",
                )
            else:
                reason = error.message if error is not None else "Not inserted"
                outcome.add_failure(record, RowErrorKind.INSERT_ERROR, reason)

    async def _attempt(
        self,
        level: InsertLevel,
        pending: list[_Pending],
        outcome: CommitOutcome,
        occurrences: dict[int, int],
    ) -> list[_Pending]:
        """Run one cascade level; returns the records escalated to the next one."""
        if level == InsertLevel.BULK:
            records = [record for record, _ in pending]
            try:
                await self._store.insert_many(records)
            except InsertError as e:
                logger.debug(f"Bulk insert of {len(records)} records failed, isolating rows: {e.message}")
                return [(record, e) for record in records]
            outcome.inserted += len(records)
            return []

        escalated: list[_Pending] = []
        for record, _ in pending:
            candidate = record
            if level == InsertLevel.DISAMBIGUATE:
                candidate = record.with_slug(
                    disambiguate_slug(
                        record.slug,
                        record.fingerprint,
                        self._policy.suffix_length,
                        occurrences.get(record.line, 0),
                    )
                )
            try:
                await self._store.insert_many([candidate])
            except DuplicateKeyError as e:
                escalated.append((record, e))
                continue
            except InsertError as e:
                outcome.add_failure(record, RowErrorKind.INSERT_ERROR, e.message)
                continue
            outcome.inserted += 1
            if candidate is not record:
                outcome.disambiguated += 1
                logger.debug(f"Line {record.line}: inserted as {candidate.slug!r} after slug collision")
        return escalated
