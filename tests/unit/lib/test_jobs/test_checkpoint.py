"""Unit tests for import job checkpoint transitions."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from schools_api.lib.jobs.checkpoint import (
    BatchResult,
    ImportStatus,
    InvalidTransitionError,
    JobCheckpoint,
    advance,
    append_row_errors,
    complete,
    fail,
    new_checkpoint,
    start,
)
from schools_api.lib.jobs.errors import RowError, RowErrorKind

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _queued(total: int = 3200, batch_size: int = 1500) -> JobCheckpoint:
    return new_checkpoint(
        uuid.uuid4(),
        file_name="escolas.csv",
        file_path="imports/x.csv",
        total_records=total,
        batch_size=batch_size,
        now=NOW,
    )


class TestNewCheckpoint:
    def test_starts_queued_at_cursor_zero(self) -> None:
        cp = _queued()
        assert cp.status == ImportStatus.QUEUED
        assert cp.cursor_line == 0
        assert cp.current_batch == 0
        assert cp.processed_records == 0
        assert cp.created_at == NOW
        assert cp.is_terminal is False

    def test_rejects_non_positive_batch_size(self) -> None:
        with pytest.raises(ValueError, match="batch_size"):
            new_checkpoint(uuid.uuid4(), file_name="a.csv", file_path=None, total_records=1, batch_size=0, now=NOW)


class TestStart:
    def test_queued_to_processing(self) -> None:
        cp = start(_queued(), NOW)
        assert cp.status == ImportStatus.PROCESSING
        assert cp.started_at == NOW

    def test_already_processing_is_unchanged(self) -> None:
        cp = start(_queued(), NOW)
        assert start(cp, NOW + timedelta(minutes=5)) is cp


class TestAdvance:
    """Tests for the per-batch transition."""

    def test_moves_cursor_and_counters(self) -> None:
        cp = start(_queued(), NOW)
        cp = advance(cp, rows_read=1500, inserted=1490, skipped=8, failed=2)

        assert cp.cursor_line == 1500
        assert cp.processed_records == 1500
        assert cp.inserted_records == 1490
        assert cp.skipped_records == 8
        assert cp.failed_records == 2
        assert cp.current_batch == 1

    def test_conservation_is_enforced(self) -> None:
        cp = start(_queued(), NOW)
        with pytest.raises(ValueError, match="does not account for every row"):
            advance(cp, rows_read=10, inserted=5, skipped=1, failed=1)

    def test_empty_batch_rejected(self) -> None:
        cp = start(_queued(), NOW)
        with pytest.raises(ValueError, match="at least one row"):
            advance(cp, rows_read=0, inserted=0, skipped=0, failed=0)

    def test_requires_processing(self) -> None:
        with pytest.raises(InvalidTransitionError):
            advance(_queued(), rows_read=1, inserted=1, skipped=0, failed=0)

    def test_total_grows_when_file_has_more_rows(self) -> None:
        cp = start(_queued(total=10, batch_size=20), NOW)
        cp = advance(cp, rows_read=12, inserted=12, skipped=0, failed=0)
        assert cp.total_records == 12

    def test_row_errors_are_logged(self) -> None:
        cp = start(_queued(), NOW)
        error = RowError(line=7, kind=RowErrorKind.DUPLICATE_SKIP, reason="School already imported", name="Escola")
        cp = advance(cp, rows_read=1, inserted=0, skipped=1, failed=0, row_errors=[error])

        assert cp.error_details["row_errors"] == [
            {"line": 7, "kind": "duplicate_skip", "reason": "School already imported", "name": "Escola"}
        ]
        assert cp.error_details["row_errors_truncated"] == 0

    def test_returns_new_checkpoint(self) -> None:
        before = start(_queued(), NOW)
        after = advance(before, rows_read=5, inserted=5, skipped=0, failed=0)
        assert before.cursor_line == 0
        assert after is not before


class TestAppendRowErrors:
    def test_caps_logged_errors(self) -> None:
        errors = [RowError(line=i, kind=RowErrorKind.INSERT_ERROR, reason="x") for i in range(5)]
        details = append_row_errors({}, errors[:3], max_logged=4)
        details = append_row_errors(details, errors[3:], max_logged=4)

        assert [e["line"] for e in details["row_errors"]] == [0, 1, 2, 3]
        assert details["row_errors_truncated"] == 1

    def test_does_not_mutate_input(self) -> None:
        original: dict = {"row_errors": []}
        append_row_errors(original, [RowError(line=1, kind=RowErrorKind.INSERT_ERROR, reason="x")], 10)
        assert original == {"row_errors": []}


class TestTerminalTransitions:
    """Tests for complete and fail."""

    def test_complete_records_elapsed_time(self) -> None:
        cp = start(_queued(total=3), NOW)
        cp = advance(cp, rows_read=3, inserted=3, skipped=0, failed=0)
        done = complete(cp, NOW + timedelta(minutes=2, seconds=5))

        assert done.status == ImportStatus.COMPLETED
        assert done.is_terminal is True
        assert done.completed_at == NOW + timedelta(minutes=2, seconds=5)
        assert done.error_details["elapsed_ms"] == 125_000
        assert done.error_details["elapsed_formatted"] == "2m 5s"

    def test_complete_sets_total_to_processed(self) -> None:
        cp = start(_queued(total=5), NOW)
        cp = advance(cp, rows_read=4, inserted=4, skipped=0, failed=0)
        assert complete(cp, NOW).total_records == 4

    def test_fail_keeps_cursor(self) -> None:
        cp = start(_queued(), NOW)
        cp = advance(cp, rows_read=1500, inserted=1500, skipped=0, failed=0)
        failed = fail(cp, "Record store unavailable", NOW)

        assert failed.status == ImportStatus.FAILED
        assert failed.error_message == "Record store unavailable"
        assert failed.cursor_line == 1500
        assert failed.completed_at == NOW

    def test_queued_job_can_fail(self) -> None:
        assert fail(_queued(), "boom", NOW).status == ImportStatus.FAILED

    @pytest.mark.parametrize("terminal", ["complete", "fail"])
    def test_terminal_checkpoints_are_immutable(self, terminal: str) -> None:
        cp = start(_queued(), NOW)
        cp = complete(cp, NOW) if terminal == "complete" else fail(cp, "boom", NOW)

        with pytest.raises(InvalidTransitionError):
            start(cp, NOW)
        with pytest.raises(InvalidTransitionError):
            advance(cp, rows_read=1, inserted=1, skipped=0, failed=0)
        with pytest.raises(InvalidTransitionError):
            complete(cp, NOW)
        with pytest.raises(InvalidTransitionError):
            fail(cp, "again", NOW)


class TestSerialization:
    def test_checkpoint_to_dict(self) -> None:
        cp = start(_queued(), NOW)
        data = cp.to_dict()
        assert data["id"] == str(cp.id)
        assert data["status"] == "processing"
        assert data["started_at"] == NOW.isoformat()
        assert data["completed_at"] is None

    def test_batch_result_from_checkpoint(self) -> None:
        cp = start(_queued(), NOW)
        cp = advance(cp, rows_read=1500, inserted=1500, skipped=0, failed=0)
        result = BatchResult.from_checkpoint(cp, batch_time_ms=42)

        assert result.done is False
        assert result.current_batch == 1
        assert result.processed_records == 1500
        assert result.batch_time_ms == 42
        assert result.to_dict()["status"] == "processing"
