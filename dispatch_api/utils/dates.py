"""
Calendar-key helpers.

Dispatch dates are plain ``YYYY-MM-DD`` keys. All arithmetic here is on the
calendar only; nothing converts between timezones.
"""
import calendar
import re
from datetime import date, timedelta
from typing import Tuple

DATE_KEY_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_PATTERN_TOKEN_RE = re.compile(r"YYYY|MM|DD")

# Last key with no following day
MAX_DATE_KEY = "9999-12-31"


def parse_date_key(value: str) -> date:
    """Parse a YYYY-MM-DD key; raises ValueError for anything else"""
    match = DATE_KEY_RE.match(value or "")
    if not match:
        raise ValueError(f'Invalid date key "{value}". Expected YYYY-MM-DD.')
    year, month, day = (int(part) for part in match.groups())
    return date(year, month, day)


def is_date_key(value: str) -> bool:
    try:
        parse_date_key(value)
    except ValueError:
        return False
    return True


def format_date_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}-{d.day:02d}"


def add_days(date_key: str, days: int) -> str:
    """Shift a date key by whole calendar days; ValueError past year 1 or 9999"""
    try:
        shifted = parse_date_key(date_key) + timedelta(days=days)
    except OverflowError:
        raise ValueError(f'Date key "{date_key}" shifted by {days} day(s) is out of range')
    return format_date_key(shifted)


def month_bounds(year: int, month: int) -> Tuple[str, str]:
    """First and last date keys of a month"""
    last_day = calendar.monthrange(year, month)[1]
    return format_date_key(date(year, month, 1)), format_date_key(date(year, month, last_day))


def render_date_pattern(pattern: str, d: date) -> str:
    """Render a YYYY/MM/DD token pattern, e.g. 'DD.MM.YYYY' -> '14.06.2025'"""
    values = {"YYYY": f"{d.year:04d}", "MM": f"{d.month:02d}", "DD": f"{d.day:02d}"}
    return _PATTERN_TOKEN_RE.sub(lambda m: values[m.group(0)], pattern)
