"""
Time Arithmetic Utilities

Pure helpers for weekday occurrence counting within calendar months,
time-of-day slot generation and timezone-aware conversion/formatting.

Day-of-week numbers follow the 0=Sunday ... 6=Saturday convention used by the
stored availability and recurring slot rows.
"""
import calendar
import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from lessonbook.config import DEFAULT_TIMEZONE
from lessonbook.errors import ValidationError

logger = logging.getLogger(__name__)

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

_MONTH_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")
_TIME_RE = re.compile(r"^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$")


def utcnow() -> datetime:
    """Default clock: timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """
    Return value as an aware UTC datetime.

    Naive values are assumed to already be UTC (SQLite drops tzinfo on read).
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_of_week(day: date) -> int:
    """Sunday-based weekday number (0=Sunday) for a date."""
    return (day.weekday() + 1) % 7


def day_name(dow: int) -> str:
    return DAY_NAMES[dow]


def validate_day_of_week(dow: int) -> int:
    if not isinstance(dow, int) or isinstance(dow, bool) or dow < 0 or dow > 6:
        raise ValidationError(f"Invalid day of week: {dow}. Must be 0 (Sunday) to 6 (Saturday)")
    return dow


def parse_month(month: str) -> Tuple[int, int]:
    """
    Parse a YYYY-MM month string.

    Args:
        month: Month in YYYY-MM form (e.g. "2025-09")

    Returns:
        Tuple of (year, month_number)

    Raises:
        ValidationError: If the string is not a valid month
    """
    match = _MONTH_RE.match(month or "")
    if not match:
        raise ValidationError(f"Invalid month: {month!r}. Use YYYY-MM format")
    return int(match.group(1)), int(match.group(2))


def month_of(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def shift_month(month: str, delta: int) -> str:
    """Move a YYYY-MM month forward (or back, for negative delta)."""
    year, month_num = parse_month(month)
    index = year * 12 + (month_num - 1) + delta
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def months_between(start_month: str, end_month: Optional[str] = None) -> List[str]:
    """
    List months from start_month to end_month inclusive.

    Without an end month the range runs twelve months past the start.
    """
    if end_month is None:
        end_month = shift_month(start_month, 12)
    else:
        parse_month(end_month)

    months = []
    current = start_month
    parse_month(current)
    while current <= end_month:
        months.append(current)
        current = shift_month(current, 1)
    return months


def month_bounds(month: str) -> Tuple[date, date]:
    """First and last calendar day of a month."""
    year, month_num = parse_month(month)
    last_day = calendar.monthrange(year, month_num)[1]
    return date(year, month_num, 1), date(year, month_num, last_day)


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield each calendar day from start to end inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def occurrence_dates(dow: int, month: str, on_or_after: Optional[date] = None) -> List[date]:
    """
    Calendar dates in month that fall on the given weekday.

    Dates are local calendar days of the month, never UTC-shifted.

    Args:
        dow: Day of week (0=Sunday)
        month: Month in YYYY-MM form
        on_or_after: If given, drop dates before this day

    Returns:
        Sorted list of matching dates
    """
    validate_day_of_week(dow)
    first, last = month_bounds(month)

    # Jump straight to the first matching day, then step by weeks
    offset = (dow - day_of_week(first)) % 7
    current = first + timedelta(days=offset)

    dates = []
    while current <= last:
        if on_or_after is None or current >= on_or_after:
            dates.append(current)
        current += timedelta(days=7)
    return dates


def occurrences_in_month(dow: int, month: str) -> int:
    """Count of a weekday within a calendar month (always 4 or 5)."""
    return len(occurrence_dates(dow, month))


def parse_time_of_day(value: str) -> time:
    """
    Parse an HH:MM string into a time.

    Raises:
        ValidationError: If the value is not a valid 24-hour HH:MM time
    """
    match = _TIME_RE.match(value or "")
    if not match:
        raise ValidationError(f"Invalid time format {value!r}. Use HH:MM format (e.g., 09:00)")
    return time(int(match.group(1)), int(match.group(2)))


def minutes_since_midnight(value: str) -> int:
    parsed = parse_time_of_day(value)
    return parsed.hour * 60 + parsed.minute


def format_time_of_day(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def normalize_time_of_day(value: str) -> str:
    """Canonical zero-padded HH:MM, so "9:00" and "09:00" compare equal."""
    return format_time_of_day(minutes_since_midnight(value))


def generate_time_slots(start_time: str, end_time: str, duration: int, step: int = 30) -> List[str]:
    """
    Enumerate slot start times inside a time-of-day window.

    A slot is included only if start + duration fits at or before end_time.

    Args:
        start_time: Window start, HH:MM
        end_time: Window end, HH:MM
        duration: Slot length in minutes
        step: Distance between consecutive slot starts in minutes

    Returns:
        List of HH:MM slot start strings
    """
    start = minutes_since_midnight(start_time)
    end = minutes_since_midnight(end_time)

    slots = []
    current = start
    while current + duration <= end:
        slots.append(format_time_of_day(current))
        current += step
    return slots


def normalize_timezone(name: Optional[str], default: str = DEFAULT_TIMEZONE) -> str:
    """
    Return a valid IANA timezone identifier.

    Timezone strings come from free-text profile fields, so anything blank
    or unknown falls back to the default instead of failing the request.
    """
    candidate = (name or "").strip()
    if candidate:
        try:
            ZoneInfo(candidate)
            return candidate
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone {candidate!r}, falling back to {default}")
    return default


def local_to_utc(day: date, time_of_day: str, tz_name: str) -> datetime:
    """Combine a local calendar day and HH:MM time in tz_name into aware UTC."""
    local = datetime.combine(day, parse_time_of_day(time_of_day), tzinfo=ZoneInfo(tz_name))
    return local.astimezone(timezone.utc)


def to_local(value: datetime, tz_name: str) -> datetime:
    return ensure_utc(value).astimezone(ZoneInfo(tz_name))


def local_date(value: datetime, tz_name: str) -> date:
    return to_local(value, tz_name).date()


def first_occurrence_after(
    after: datetime,
    dow: int,
    time_of_day: str,
    tz_name: str,
    not_before: Optional[date] = None,
) -> date:
    """
    Local date of the first weekly occurrence that starts after an instant.

    Args:
        after: Occurrences starting at or before this instant are skipped
        dow: Day of week (0=Sunday)
        time_of_day: Local HH:MM start
        tz_name: IANA timezone of the weekly schedule
        not_before: Optional earliest local date to consider
    """
    current = local_date(after, tz_name)
    if not_before is not None and not_before > current:
        current = not_before
    current += timedelta(days=(dow - day_of_week(current)) % 7)
    while local_to_utc(current, time_of_day, tz_name) <= ensure_utc(after):
        current += timedelta(days=7)
    return current


def format_in_timezone(value: datetime, tz_name: str, fmt: str = "%Y-%m-%d %H:%M %Z") -> str:
    """Format an instant as wall-clock time in the given timezone."""
    return to_local(value, tz_name).strftime(fmt)


def _format_12h(minutes: int) -> str:
    hour = (minutes // 60) % 24
    minute = minutes % 60
    suffix = "AM" if hour < 12 else "PM"
    display_hour = hour % 12 or 12
    return f"{display_hour}:{minute:02d} {suffix}"


def format_slot_time(start_time: str, duration: int) -> str:
    """Human readable slot span, e.g. "9:00 AM - 9:30 AM"."""
    start = minutes_since_midnight(start_time)
    return f"{_format_12h(start)} - {_format_12h(start + duration)}"
