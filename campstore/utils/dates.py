"""Date helpers shared by pricing, lifecycle and the API layer."""
from datetime import date, datetime, timezone
from typing import Optional, Union

from campstore.exceptions import ValidationError


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.

    SQLite hands back naive datetimes even for timezone-aware columns;
    those are stored in UTC, so they are tagged rather than converted.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_date(value: Union[str, date, None], field: str) -> Optional[date]:
    """Parse an ISO date (YYYY-MM-DD or a full ISO timestamp)."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        if 'T' in value:
            return datetime.fromisoformat(value.replace('Z', '+00:00')).date()
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError(f'Invalid date for {field}: {value!r}', field=field)
