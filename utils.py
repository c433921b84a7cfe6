"""
Shared parsing helpers for the certificate service.
"""
from typing import Optional, Any
from datetime import date, datetime, UTC


def safe_parse_date(value, fmt: str = '%Y-%m-%d') -> Optional[date]:
    """Parse date-like values to a date object or return None for invalid/empty inputs.

    Accepts date and datetime objects, `YYYY-MM-DD` strings and full ISO timestamps
    (the time part is dropped).
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    v = str(value).strip()
    if v == '':
        return None
    try:
        return datetime.strptime(v, fmt).date()
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(v.replace('Z', '+00:00')).date()
    except ValueError:
        return None


def parse_int(value: Any) -> Optional[int]:
    """Return value as int, or None when it is missing or not an integer."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def env_flag(value, default: bool = False) -> bool:
    if value is None:
        return default
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')
