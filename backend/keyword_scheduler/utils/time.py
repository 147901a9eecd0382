"""Time helpers shared by the pipeline and repository."""

from datetime import UTC, datetime, timedelta


def utc_now() -> datetime:
    return datetime.now(UTC)


def days_ago(days: int, now: datetime | None = None) -> datetime:
    """Return the instant `days` days before now."""
    return (now or utc_now()) - timedelta(days=days)
