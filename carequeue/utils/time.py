"""Time and datetime utilities."""

from datetime import date, datetime, time, timezone, tzinfo
from zoneinfo import ZoneInfo

from carequeue.core.config import settings


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def clinic_tz() -> tzinfo:
    """Timezone in which appointment dates and times are expressed."""
    name = settings.clinic_timezone
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def combine_local(day: date, at: time) -> datetime:
    """Combine a clinic-local date and wall-clock time into an aware datetime."""
    return datetime.combine(day, at, tzinfo=clinic_tz())


def ensure_aware(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from backends without tz support."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt
