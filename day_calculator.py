"""Content day arithmetic and calendar-day strings."""

from datetime import datetime, time, timezone
from typing import Optional

import pytz

from config import DEFAULT_TIMEZONE, get_logger
from models import CoupleSettings

logger = get_logger(__name__)

DATE_FORMAT = "%Y-%m-%d"


def resolve_timezone(name: Optional[str]) -> pytz.BaseTzInfo:
    """Return the pytz zone for an IANA name, falling back to UTC."""
    try:
        return pytz.timezone(name or DEFAULT_TIMEZONE)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone '{name}', falling back to UTC")
        return pytz.utc


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def expected_day(settings: CoupleSettings, now: Optional[datetime] = None) -> int:
    """Compute the 1-based content day for a couple.

    Whole calendar days are counted between the start date and ``now``, both
    taken as calendar dates in the couple's timezone, so the result only
    changes at local midnight. Negative deltas are clamped to day 1.
    """
    tz = resolve_timezone(settings.timezone)
    now = _aware(now or datetime.now(timezone.utc))
    start_date = _aware(settings.start_date).astimezone(tz).date()
    today = now.astimezone(tz).date()
    return max((today - start_date).days + 1, 1)


def today_string(timezone_name: Optional[str] = None, now: Optional[datetime] = None) -> str:
    """Calendar-day string (YYYY-MM-DD) for ``now`` in the given timezone."""
    now = _aware(now or datetime.now(timezone.utc))
    return now.astimezone(resolve_timezone(timezone_name)).strftime(DATE_FORMAT)


def start_of_day_utc(now: Optional[datetime] = None) -> datetime:
    """Midnight UTC of the current UTC day, used as a new couple's start date."""
    now = _aware(now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return datetime.combine(now.date(), time.min, tzinfo=timezone.utc)
