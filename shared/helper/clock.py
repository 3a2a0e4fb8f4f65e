"""UTC time helpers shared by the job queue and the workers."""

from datetime import datetime

import pytz


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(pytz.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from the database (SQLite drops tzinfo)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return pytz.utc.localize(value)
    return value.astimezone(pytz.utc)
