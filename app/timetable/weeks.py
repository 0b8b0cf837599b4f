"""
Academic week arithmetic and schedule cache keys.

The academic year starts on the first Monday on or after 1 September.
Schedule keys are built from the Monday of the requested week so that any
date inside one week maps to the same cache slot.
"""
from datetime import date, datetime, timedelta
from typing import Optional

# Upstream week_id of the first academic week
BASE_WEEK_ID = 786

SCHEDULE_CACHE_VERSION = "v2"


def parse_date_param(value: Optional[str]) -> Optional[date]:
    """Parse 'YYYY-MM-DD'; None for anything else."""
    if not value:
        return None
    parts = value.split("-")
    if len(parts) != 3:
        return None
    try:
        year, month, day = (int(part) for part in parts)
        return date(year, month, day)
    except ValueError:
        return None


def monday_of_week(day: date) -> date:
    if isinstance(day, datetime):
        day = day.date()
    return day - timedelta(days=day.weekday())


def format_date_param(day: date) -> str:
    return day.strftime("%Y-%m-%d")


def format_lesson_date(day: date) -> str:
    return day.strftime("%d.%m.%Y")


def academic_year_start(day: date) -> date:
    """First Monday on or after 1 September of the academic year containing day."""
    year = day.year if day.month >= 9 else day.year - 1
    september_first = date(year, 9, 1)
    return september_first + timedelta(days=(7 - september_first.weekday()) % 7)


def _weeks_since_start(day: date) -> int:
    return (day - academic_year_start(day)).days // 7


def academic_week_number(day: date) -> int:
    return _weeks_since_start(day) + 1


def week_type(day: date) -> str:
    """'odd' or 'even' academic week."""
    return "odd" if academic_week_number(day) % 2 == 1 else "even"


def week_id(day: date) -> int:
    """Upstream week_id query parameter for the week containing day."""
    return BASE_WEEK_ID + _weeks_since_start(day)


def schedule_cache_key(faculty: str, group: str, week_start: date) -> str:
    monday = monday_of_week(week_start)
    return f"schedule:{SCHEDULE_CACHE_VERSION}:{faculty}:{group}:{format_date_param(monday)}"
