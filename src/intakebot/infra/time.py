"""Time utilities for consistent timestamp handling."""

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def is_older_than(moment: datetime, max_age: timedelta, now: datetime | None = None) -> bool:
    """True if `moment` lies more than `max_age` before `now`."""
    return (now or utc_now()) - moment > max_age
