"""
Timezone utilities for the studio scheduling core.

All instants are stored and compared in UTC; the studio timezone is only used
when rendering times for people.
"""

from datetime import datetime, timezone
from typing import Optional

import pytz

from .config import settings


def utc_now() -> datetime:
    """Return the current timezone-aware UTC instant."""
    return datetime.now(timezone.utc)


def is_aware(dt: datetime) -> bool:
    return dt.tzinfo is not None and dt.tzinfo.utcoffset(dt) is not None


def ensure_utc(dt: datetime) -> datetime:
    """
    Normalize an aware datetime to UTC.

    Raises:
        ValueError: if ``dt`` is naive
    """
    if not is_aware(dt):
        raise ValueError("datetime must be timezone-aware")
    return dt.astimezone(timezone.utc)


def studio_timezone(name: Optional[str] = None) -> pytz.BaseTzInfo:
    return pytz.timezone(name or settings.studio_timezone)


def to_studio_local(dt: datetime, tz_name: Optional[str] = None) -> datetime:
    """Convert an aware instant to the studio's local wall-clock time."""
    return ensure_utc(dt).astimezone(studio_timezone(tz_name))


def format_for_studio(dt: datetime, tz_name: Optional[str] = None) -> str:
    return to_studio_local(dt, tz_name).strftime("%Y-%m-%d %H:%M")
