from __future__ import annotations

import datetime
import math
import os
import re
from typing import Optional, Tuple
from zoneinfo import ZoneInfo


SHIFT_MORNING = "MORNING"
SHIFT_AFTERNOON = "AFTERNOON"
SHIFT_FULLTIME = "FULLTIME"
SHIFT_DAYOFF = "DAYOFF"
SHIFT_VACATION = "VACATION"
SHIFT_TYPES = (SHIFT_MORNING, SHIFT_AFTERNOON, SHIFT_FULLTIME, SHIFT_DAYOFF, SHIFT_VACATION)
# Display order used when listing a day's roster.
SHIFT_TYPE_ORDER = {name: idx for idx, name in enumerate(SHIFT_TYPES)}
CHOICE_TYPES = (SHIFT_MORNING, SHIFT_AFTERNOON)
LOCKABLE_SHIFT_TYPES = (SHIFT_MORNING, SHIFT_AFTERNOON, SHIFT_FULLTIME)

VACATION_PENDING = "PENDING"
VACATION_APPROVED = "APPROVED"
VACATION_REJECTED = "REJECTED"
VACATION_STATUSES = (VACATION_PENDING, VACATION_APPROVED, VACATION_REJECTED)

# Default capacity split: mornings take three fifths of the available officers.
MORNING_SHARE_NUMERATOR = 3
MORNING_SHARE_DENOMINATOR = 5

DEFAULT_AUTO_TIME = "19:00"
SCHEDULE_TIMEZONE = os.getenv("CHECKPOINT_TIMEZONE", "Africa/Mogadishu")
WEEKDAY_TOKENS = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]

_AUTO_TIME_RE = re.compile(r"^\d{2}:\d{2}$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def weekday_index(date_: datetime.date) -> int:
    """Return the weekday for a calendar date with Sunday as 0.

    Computed from the date's own year/month/day, never from an instant, so the
    result does not depend on the host timezone.
    """
    if isinstance(date_, datetime.datetime):
        date_ = date_.date()
    return (date_.weekday() + 1) % 7


def weekday_token(date_: datetime.date) -> str:
    return WEEKDAY_TOKENS[weekday_index(date_)]


def default_limits(available_count: int) -> Tuple[int, int]:
    """Return (morning_limit, afternoon_limit) for a number of available officers."""
    available = max(0, int(available_count or 0))
    morning = math.ceil(available * MORNING_SHARE_NUMERATOR / MORNING_SHARE_DENOMINATOR)
    afternoon = max(available - morning, 0)
    return morning, afternoon


def normalize_shift_type(value: Optional[str]) -> str:
    return (value or "").strip().upper()


def parse_calendar_date(value) -> datetime.date:
    """Coerce a date, datetime or YYYY-MM-DD string to a calendar date."""
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    text = str(value or "").strip()
    if not text:
        raise ValueError("date is required")
    day = text.split("T", 1)[0]
    if not _DATE_RE.match(day):
        raise ValueError(f"date must be YYYY-MM-DD, got {text!r}")
    try:
        return datetime.date.fromisoformat(day)
    except ValueError as exc:
        raise ValueError(f"date must be YYYY-MM-DD, got {text!r}") from exc


def parse_auto_time(value: Optional[str]) -> datetime.time:
    label = (value or DEFAULT_AUTO_TIME).strip()
    if not _AUTO_TIME_RE.match(label):
        raise ValueError("Time must be HH:MM")
    hour, minute = (int(part) for part in label.split(":", 1))
    if hour > 23 or minute > 59:
        raise ValueError("Time must be HH:MM")
    return datetime.time(hour, minute)


def schedule_zone() -> ZoneInfo:
    return ZoneInfo(SCHEDULE_TIMEZONE)


def local_now(now: datetime.datetime) -> datetime.datetime:
    """Express an instant in the schedule timezone; naive values are taken as already local."""
    if now.tzinfo is None:
        return now.replace(tzinfo=schedule_zone())
    return now.astimezone(schedule_zone())


def local_today(now: datetime.datetime) -> datetime.date:
    return local_now(now).date()


def local_tomorrow(now: datetime.datetime) -> datetime.date:
    return local_today(now) + datetime.timedelta(days=1)


def auto_cutoff(now: datetime.datetime, auto_time: Optional[str]) -> datetime.datetime:
    """Return today's automatic-generation instant in the schedule timezone."""
    current = local_now(now)
    return datetime.datetime.combine(current.date(), parse_auto_time(auto_time), tzinfo=current.tzinfo)


def is_past_cutoff(now: datetime.datetime, auto_time: Optional[str]) -> bool:
    return local_now(now) >= auto_cutoff(now, auto_time)
