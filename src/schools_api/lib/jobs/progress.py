"""Elapsed time, throughput and ETA helpers for import progress reporting."""

from datetime import UTC, datetime


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops the offset)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def elapsed_ms(started_at: datetime | None, now: datetime) -> int:
    """Milliseconds between ``started_at`` and ``now``; 0 when never started."""
    if started_at is None:
        return 0
    delta = as_utc(now) - as_utc(started_at)
    return max(int(delta.total_seconds() * 1000), 0)


def format_elapsed(milliseconds: int) -> str:
    """Format a duration as ``"Xm Ys"`` (``"0m 5s"``, ``"12m 40s"``)."""
    total_seconds = max(milliseconds, 0) // 1000
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes}m {seconds}s"


def throughput(processed: int, elapsed_seconds: float) -> float:
    """Rows per second; 0.0 before any time has passed."""
    if elapsed_seconds <= 0:
        return 0.0
    return processed / elapsed_seconds


def estimate_remaining_seconds(processed: int, total: int, elapsed_seconds: float) -> float | None:
    """Estimate seconds left from the observed throughput.

    Returns:
        Seconds remaining, 0.0 when done, or None without enough signal.
    """
    if processed >= total:
        return 0.0
    rate = throughput(processed, elapsed_seconds)
    if rate == 0.0:
        return None
    return (total - processed) / rate
