"""Timezone helpers.

All timestamps handled by the pipeline are timezone-aware UTC. SQLite drops
tzinfo on the way back out, so values read from the database go through
``as_utc`` before being compared.
"""

import calendar
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    """Milliseconds since the Unix epoch, treating naive values as UTC."""
    value = as_utc(value)
    return calendar.timegm(value.utctimetuple()) * 1000 + value.microsecond // 1000
