"""Timestamps are stored as naive UTC (TIMESTAMP WITHOUT TIME ZONE)."""

from datetime import UTC, datetime


def naive_utc(dt: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are taken as UTC already."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(UTC)
    return dt.replace(tzinfo=None)


def utc_naive_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)
