"""
RequestGuard: User Timezone Helpers
=====================================

What:  Convert between UTC (how everything is stored) and a user's local time.
How:   zoneinfo for the zone database; strings are parsed as ISO 8601.
       When a user is given, their `timezone` wins over the explicit argument.

Examples:
    to_user_date("2024-01-15T12:00:00", tz="America/Sao_Paulo")
        → 2024-01-15 09:00:00-03:00
    from_user_date("2024-01-15 09:00", tz="America/Sao_Paulo")
        → 2024-01-15 12:00:00+00:00
"""

from datetime import datetime, timezone
from typing import Any, Optional, Union
from zoneinfo import ZoneInfo

UTC = "UTC"

DateLike = Union[str, datetime]


def _zone(name: Optional[str]) -> ZoneInfo:
    return ZoneInfo(name or UTC)


def _user_timezone(user: Any, fallback: Optional[str]) -> Optional[str]:
    if user is not None and getattr(user, "timezone", None):
        return user.timezone
    return fallback


def to_user_date(value: DateLike, user: Any = None, tz: str = UTC) -> datetime:
    """UTC date (string or datetime) expressed in the user's timezone."""
    target = _zone(_user_timezone(user, tz))
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(target)

    # Naive datetimes are treated as UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(target)


def from_user_date(value: DateLike, user: Any = None, tz: Optional[str] = None) -> datetime:
    """User-local date (string or datetime) converted to UTC."""
    source = _zone(_user_timezone(user, tz))
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=source)
        return parsed.astimezone(timezone.utc)

    if value.tzinfo is None:
        value = value.replace(tzinfo=source)
    return value.astimezone(timezone.utc)
