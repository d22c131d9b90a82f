from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
import pytz
from dateutil import parser

from .config import config


def get_clinic_timezone(tz_name: Optional[str] = None):
    """Get the clinic's timezone"""
    return pytz.timezone(tz_name or config.CLINIC_TIMEZONE)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_event_time(value: str, tz_name: Optional[str] = None) -> datetime:
    """Parse a calendar start/end value. All-day dates are taken as midnight clinic time."""
    dt = parser.isoparse(value)
    if dt.tzinfo is None:
        dt = get_clinic_timezone(tz_name).localize(dt)
    return dt


def format_appointment_time(value, tz_name: Optional[str] = None) -> str:
    """Format an appointment time for patient-facing messages,
    e.g. "Wednesday 21 October 2026 at 14:30"
    """
    try:
        dt = value if isinstance(value, datetime) else parse_event_time(value, tz_name)
        if dt.tzinfo is None:
            dt = get_clinic_timezone(tz_name).localize(dt)
        local = dt.astimezone(get_clinic_timezone(tz_name))
        return local.strftime("%A %d %B %Y at %H:%M")
    except (ValueError, TypeError, OverflowError):
        return str(value)


def lookahead_window(now: Optional[datetime] = None, hours: Optional[int] = None) -> Tuple[datetime, datetime]:
    """[now, now + hours] for the reminder scan"""
    now = now or utc_now()
    hours = config.LOOKAHEAD_HOURS if hours is None else hours
    return now, now + timedelta(hours=hours)


def seconds_until_midnight(now: Optional[datetime] = None, tz_name: Optional[str] = None) -> float:
    """Seconds from now until the next 00:00 in the clinic timezone"""
    tz = get_clinic_timezone(tz_name)
    local_now = (now or utc_now()).astimezone(tz)
    next_day = (local_now + timedelta(days=1)).date()
    midnight = tz.localize(datetime(next_day.year, next_day.month, next_day.day))
    return max((midnight - local_now).total_seconds(), 1.0)
