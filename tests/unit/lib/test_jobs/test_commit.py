"""Unit tests for the commit stage insert cascade."""

import hashlib

import pytest

from schools_api.lib.importer.records import NormalizedSchoolRecord
from schools_api.lib.jobs.commit import CommitRetryPolicy, CommitStage, InsertLevel
from schools_api.lib.jobs.errors import InfrastructureError, RowErrorKind


def _fingerprint(key: str) -> str:
    return hashlib.sha1(key.encode()).hexdigest()  # noqa: S324


def _record(line: int, *, slug: str | None = None, fingerprint: str | None = None) -> NormalizedSchoolRecord:
    return NormalizedSchoolRecord(
        line=line,
        name=f"Escola {line}",
        slug=slug or f"escola-{line}-campinas",
        postal_code=f"13000-{line:03d}",
        fingerprint=fingerprint or _fingerprint(str(line)),
        city="Campinas",
    )


def _assert_conserved(outcome, records) -> None:  # type: ignore[no-untyped-def]
    assert outcome.inserted + outcome.skipped + outcome.failed == len(records)


class TestCommitRetryPolicy:
    def test_defaults(self) -> None:
        policy = CommitRetryPolicy()
        assert policy.levels == (InsertLevel.BULK, InsertLevel.SINGLE, InsertLevel.DISAMBIGUATE)
        assert policy.sub_batch_size == 100

    def test_requires_a_level(self) -> None:
        with pytest.raises(ValueError, match="at least one level"):
            CommitRetryPolicy(levels=())

    def test_requires_positive_sub_batch(self) -> None:
        with pytest.raises(ValueError, match="sub_batch_size"):
            CommitRetryPolicy(sub_batch_size=0)


class TestCommitStage:
    """Tests for CommitStage.commit."""

    async def test_bulk_insert_in_sub_batches(self, record_store) -> None:
        records = [_record(i) for i in range(1, 6)]
        stage = CommitStage(record_store, CommitRetryPolicy(sub_batch_size=2))

        outcome = await stage.commit(records)

        assert outcome.inserted == 5
        assert outcome.errors == []
        assert record_store.insert_calls == [2, 2, 1]

    async def test_empty_batch(self, record_store) -> None:
        outcome = await CommitStage(record_store).commit([])
        assert (outcome.inserted, outcome.skipped, outcome.failed) == (0, 0, 0)
        assert record_store.insert_calls == []

    async def test_known_fingerprint_is_skipped(self, record_store) -> None:
        existing = _record(1)
        await record_store.insert_many([existing])
        record_store.commit()
        again = _record(2, fingerprint=existing.fingerprint)

        outcome = await CommitStage(record_store).commit([again, _record(3)])

        assert outcome.inserted == 1
        assert outcome.skipped == 1
        assert outcome.errors[0].kind == RowErrorKind.DUPLICATE_SKIP
        assert outcome.errors[0].line == 2

    async def test_repeated_fingerprint_in_batch_is_disambiguated(self, record_store) -> None:
        first = _record(1)
        repeat = _record(2, slug="escola-1-campinas", fingerprint=first.fingerprint)

        outcome = await CommitStage(record_store).commit([first, repeat])

        assert (outcome.inserted, outcome.skipped, outcome.failed) == (2, 0, 0)
        assert outcome.disambiguated == 1
        [other] = record_store.slugs - {"escola-1-campinas"}
        assert other.startswith("escola-1-campinas-")
        assert other != f"escola-1-campinas-{first.fingerprint[:6]}"

    async def test_three_identical_rows_get_distinct_slugs(self, record_store) -> None:
        fingerprint = _fingerprint("same")
        records = [_record(i, slug="escola-a-campinas", fingerprint=fingerprint) for i in range(1, 4)]

        outcome = await CommitStage(record_store).commit(records)

        assert outcome.inserted == 3
        assert len(record_store.slugs) == 3

    async def test_fingerprint_skip_can_be_disabled(self, record_store) -> None:
        first = _record(1)
        same_school = _record(2, fingerprint=first.fingerprint)
        policy = CommitRetryPolicy(skip_known_fingerprints=False)

        outcome = await CommitStage(record_store, policy).commit([first, same_school])

        assert outcome.inserted == 2

    async def test_slug_collision_is_disambiguated(self, record_store) -> None:
        await record_store.insert_many([_record(1, slug="escola-a-campinas")])
        record_store.commit()
        records = [_record(2, slug="escola-a-campinas"), _record(3)]

        outcome = await CommitStage(record_store).commit(records)

        assert outcome.inserted == 2
        assert outcome.disambiguated == 1
        assert outcome.failed == 0
        suffix = records[0].fingerprint[:6]
        assert f"escola-a-campinas-{suffix}" in record_store.slugs
        assert "escola-3-campinas" in record_store.slugs

    async def test_collisions_within_batch_get_distinct_slugs(self, record_store) -> None:
        records = [_record(i, slug="escola-a-campinas") for i in range(1, 4)]

        outcome = await CommitStage(record_store).commit(records)

        assert outcome.inserted == 3
        assert outcome.disambiguated == 2
        assert len(record_store.slugs) == 3

    async def test_retry_happens_once(self, record_store) -> None:
        record = _record(2, slug="escola-a-campinas")
        taken = [
            _record(1, slug="escola-a-campinas"),
            _record(9, slug=f"escola-a-campinas-{record.fingerprint[:6]}"),
        ]
        await record_store.insert_many(taken)
        record_store.commit()

        outcome = await CommitStage(record_store).commit([record])

        assert outcome.inserted == 0
        assert outcome.failed == 1
        assert outcome.errors[0].kind == RowErrorKind.DUPLICATE_KEY_RETRY_EXHAUSTED
        _assert_conserved(outcome, [record])

    async def test_other_insert_error_isolated_to_its_row(self, record_store) -> None:
        record_store.fail_lines = {2}
        records = [_record(i) for i in range(1, 5)]

        outcome = await CommitStage(record_store).commit(records)

        assert outcome.inserted == 3
        assert outcome.failed == 1
        assert outcome.errors[0].kind == RowErrorKind.INSERT_ERROR
        assert outcome.errors[0].line == 2
        # one failed bulk attempt, then one attempt per row
        assert record_store.insert_calls == [4, 1, 1, 1, 1]

    async def test_bulk_only_policy_fails_whole_sub_batch(self, record_store) -> None:
        await record_store.insert_many([_record(1, slug="escola-a-campinas")])
        record_store.commit()
        records = [_record(2, slug="escola-a-campinas"), _record(3)]
        policy = CommitRetryPolicy(levels=(InsertLevel.BULK,))

        outcome = await CommitStage(record_store, policy).commit(records)

        assert outcome.inserted == 0
        assert outcome.failed == 2
        assert {e.kind for e in outcome.errors} == {RowErrorKind.DUPLICATE_KEY_RETRY_EXHAUSTED}

    async def test_infrastructure_error_propagates(self, record_store) -> None:
        record_store.outage_after_calls = 0

        with pytest.raises(InfrastructureError):
            await CommitStage(record_store).commit([_record(1)])

    async def test_conservation_with_mixed_outcomes(self, record_store) -> None:
        await record_store.insert_many([_record(100, slug="escola-x-campinas")])
        record_store.commit()
        record_store.fail_lines = {4}
        first = _record(1)
        records = [
            first,
            _record(2, fingerprint=first.fingerprint, slug="other"),
            _record(3, slug="escola-x-campinas"),
            _record(4),
            _record(5),
        ]

        outcome = await CommitStage(record_store, CommitRetryPolicy(sub_batch_size=2)).commit(records)

        _assert_conserved(outcome, records)
        assert (outcome.inserted, outcome.skipped, outcome.failed) == (3, 1, 1)
